"""Dock list (manifest) entries and tabular / free-text manifest parsing."""

import csv
import io
import re
import logging
from typing import Dict, List, Tuple, Optional, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManifestEntry:
    """One dock list row. total_packages == 0 means the manifest did not say."""
    order_number: str
    amazon_ref: str
    total_packages: int = 0

    def __post_init__(self):
        if not self.order_number or not self.order_number.strip():
            raise ValueError("order_number must not be empty")
        if not self.amazon_ref or not self.amazon_ref.strip():
            raise ValueError("amazon_ref must not be empty")

    @classmethod
    def create(
        cls,
        order_number: Optional[str],
        amazon_ref: Optional[str],
        total_packages: int = 0,
    ) -> Optional["ManifestEntry"]:
        """Build an entry, or None when either key field is empty."""
        order = (order_number or "").strip()
        ref = (amazon_ref or "").strip().upper()
        if not order or not ref:
            return None
        return cls(order_number=order, amazon_ref=ref, total_packages=max(0, int(total_packages or 0)))


@dataclass
class ManifestError:
    """Error from manifest parsing."""
    row_number: int
    field: str
    message: str


def dedupe_entries(entries: Iterable[ManifestEntry]) -> List[ManifestEntry]:
    """Drop repeated (order_number, amazon_ref) pairs, keeping the first."""
    seen = set()
    unique = []
    for entry in entries:
        key = (entry.order_number, entry.amazon_ref)
        if key not in seen:
            seen.add(key)
            unique.append(entry)
    return unique


class ManifestParser:
    """Parse delimited dock list exports (CSV, semicolon or tab separated)."""

    # Header aliases (lowercased, stripped)
    ORDER_COLUMNS = {"order", "order_number", "ordernumber", "pedido", "n_pedido", "num_pedido"}
    REF_COLUMNS = {"ref", "reference", "amazon_ref", "amazonref", "referencia", "ref_amazon"}
    PACKAGE_COLUMNS = {"packages", "total_packages", "bultos", "total", "totalbultos", "total_bultos"}

    def parse(self, content: str) -> Tuple[List[ManifestEntry], List[ManifestError]]:
        """
        Parse manifest content and return validated entries.

        With a recognized header, columns are read by name. Without one,
        each row is scanned: the reference is the first cell starting with
        FBA or longer than 5 chars, the order number the first all-digit cell.

        Returns:
            Tuple of (entries, errors)
        """
        entries: List[ManifestEntry] = []
        errors: List[ManifestError] = []

        if not content or not content.strip():
            errors.append(ManifestError(row_number=0, field="file", message="Manifest is empty"))
            return entries, errors

        delimiter = self._detect_delimiter(content)
        try:
            rows = list(csv.reader(io.StringIO(content), delimiter=delimiter))
        except csv.Error as e:
            errors.append(ManifestError(row_number=0, field="csv", message=f"CSV parsing error: {str(e)}"))
            return entries, errors

        rows = [[c.strip().replace('"', '') for c in row] for row in rows]
        header = self._header_columns(rows[0]) if rows else None

        if header is not None:
            data_rows = enumerate(rows[1:], start=2)
        else:
            data_rows = enumerate(rows, start=1)

        for row_num, row in data_rows:
            if not any(row):
                continue
            if header is not None:
                order, ref, packages, row_errors = self._read_named(row, header, row_num)
            else:
                order, ref, packages, row_errors = self._read_positional(row, row_num)
            errors.extend(row_errors)

            entry = ManifestEntry.create(order, ref, packages)
            if entry is None:
                if not row_errors:
                    errors.append(ManifestError(
                        row_number=row_num,
                        field="row",
                        message="Row needs both an order number and a reference"
                    ))
                continue
            entries.append(entry)

        return dedupe_entries(entries), errors

    def _detect_delimiter(self, content: str) -> str:
        first_line = content.strip().splitlines()[0]
        counts = {d: first_line.count(d) for d in (",", ";", "\t")}
        best = max(counts, key=counts.get)
        return best if counts[best] > 0 else ","

    def _header_columns(self, row: List[str]) -> Optional[Dict[str, int]]:
        names = [c.lower().strip().replace(" ", "_").replace(".", "") for c in row]
        columns = {}
        for idx, name in enumerate(names):
            if name in self.ORDER_COLUMNS and "order" not in columns:
                columns["order"] = idx
            elif name in self.REF_COLUMNS and "ref" not in columns:
                columns["ref"] = idx
            elif name in self.PACKAGE_COLUMNS and "packages" not in columns:
                columns["packages"] = idx
        if "order" in columns and "ref" in columns:
            return columns
        return None

    def _read_named(self, row: List[str], header: Dict[str, int], row_num: int):
        def cell(key: str) -> str:
            idx = header.get(key)
            return row[idx] if idx is not None and idx < len(row) else ""

        errors = []
        for key, field in (("order", "order_number"), ("ref", "amazon_ref")):
            if not cell(key):
                errors.append(ManifestError(row_number=row_num, field=field, message=f"{field} is required"))

        packages, pkg_error = self._parse_packages(cell("packages"), row_num)
        if pkg_error:
            errors.append(pkg_error)
        return cell("order"), cell("ref"), packages, errors

    def _read_positional(self, row: List[str], row_num: int):
        cells = [c for c in row if c]
        if len(cells) < 2:
            return None, None, 0, [ManifestError(
                row_number=row_num, field="row", message="Row has fewer than two columns"
            )]

        ref = next((c for c in cells if c.upper().startswith("FBA") or (len(c) > 5 and not c.isdigit())), None)
        order = next((c for c in cells if c.isdigit() and c != ref), None)
        if ref is None:
            # Purely numeric rows: longest cell that is not the order number
            others = [c for c in cells if c != order]
            ref = max(others, key=len) if others else None
        return order, ref, 0, []

    def _parse_packages(self, value: str, row_num: int) -> Tuple[int, Optional[ManifestError]]:
        if not value:
            return 0, None
        try:
            packages = int(float(value))
        except ValueError:
            return 0, ManifestError(
                row_number=row_num, field="total_packages", message=f"Invalid package count: '{value}'"
            )
        if packages < 0:
            return 0, ManifestError(
                row_number=row_num, field="total_packages", message=f"Package count must be positive, got {packages}"
            )
        return packages, None


ORDER_IN_LINE = re.compile(r"\b(\d{6,8})\b")
REF_IN_LINE = re.compile(r"(FBA[A-Z0-9]+|[A-Z0-9]{12,})", re.IGNORECASE)
REF_TOKEN = re.compile(r"^FBA|^[A-Z0-9]{12,}$", re.IGNORECASE)
PROXIMITY_WINDOW = 9


def parse_manifest_text(text: str) -> List[ManifestEntry]:
    """
    Pull order/reference pairs out of free manifest text.

    Each line needs a 6-8 digit order number and a reference. When no line
    produces a pair, fall back to proximity: an order token followed within
    a few tokens by a reference-looking token.
    """
    entries: List[ManifestEntry] = []
    if not text:
        return entries

    for line in re.split(r"[\n\r]+", text):
        order_match = ORDER_IN_LINE.search(line)
        ref_match = REF_IN_LINE.search(line)
        if order_match and ref_match:
            entry = ManifestEntry.create(order_match.group(1), ref_match.group(0))
            if entry:
                entries.append(entry)

    if not entries:
        tokens = text.split()
        for i, token in enumerate(tokens):
            if not re.fullmatch(r"\d{6,8}", token):
                continue
            for candidate in tokens[i + 1:i + 1 + PROXIMITY_WINDOW]:
                if REF_TOKEN.search(candidate):
                    entry = ManifestEntry.create(token, candidate)
                    if entry:
                        entries.append(entry)
                    break

    logger.info(f"Parsed {len(entries)} manifest entries from free text")
    return dedupe_entries(entries)
