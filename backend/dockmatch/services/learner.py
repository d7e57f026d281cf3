"""Learn a manifest's column layout from two example tokens and replay it.

The operator picks one order-number token and one reference token on the
same line of a manifest page. Their x positions become column anchors; every
line of every page is then read by assigning each token to its nearest
anchor (within tolerance) and validating what each column produced.
Header and footer lines fail validation and are skipped.
"""

import re
from typing import Dict, List, Optional, Sequence
import logging

from .manifest import ManifestEntry, dedupe_entries
from .normalizer import clean_reference
from .tokens import Token, group_into_lines, same_line
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

ORDER = "order"
REFERENCE = "reference"
PACKAGES = "packages"


class SpatialPatternLearner:
    """Replays a two (or three) column layout across manifest pages."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def learn(
        self,
        pages: Sequence[Sequence[Token]],
        order_example: Token,
        reference_example: Token,
        packages_example: Optional[Token] = None,
    ) -> List[ManifestEntry]:
        """
        Extract manifest entries from every page.

        Args:
            pages: Tokens per page
            order_example: A token from the order-number column
            reference_example: A token from the reference column, same line
            packages_example: Optional token from a package-count column

        Returns:
            Entries deduplicated by (order_number, amazon_ref), page order kept.
        """
        quantum = self.settings.line_quantum
        if not same_line(order_example.y, reference_example.y, quantum):
            logger.warning(
                "Example tokens are not on the same line "
                f"(y={order_example.y} vs y={reference_example.y}); using their x anyway"
            )

        anchors = {ORDER: order_example.x, REFERENCE: reference_example.x}
        if packages_example is not None:
            anchors[PACKAGES] = packages_example.x

        entries = []
        skipped = 0
        for page_num, tokens in enumerate(pages, start=1):
            for line in group_into_lines(tokens, quantum):
                entry = self._read_line(line, anchors)
                if entry is None:
                    skipped += 1
                    continue
                entries.append(entry)

        unique = dedupe_entries(entries)
        logger.info(
            f"Learned {len(unique)} manifest entries from {len(pages)} pages "
            f"({skipped} lines skipped, {len(entries) - len(unique)} duplicates)"
        )
        return unique

    def assign_columns(self, line: Sequence[Token], anchors: Dict[str, float]) -> Dict[str, str]:
        """Concatenate each column's tokens, each token going to its nearest anchor."""
        tolerance = self.settings.column_tolerance
        columns: Dict[str, List[Token]] = {name: [] for name in anchors}

        for token in line:
            name, distance = min(
                ((n, abs(token.x - ax)) for n, ax in anchors.items()),
                key=lambda pair: pair[1],
            )
            if distance <= tolerance:
                columns[name].append(token)

        return {
            name: "".join(t.text for t in sorted(toks, key=lambda t: t.x))
            for name, toks in columns.items()
        }

    def _read_line(self, line: Sequence[Token], anchors: Dict[str, float]) -> Optional[ManifestEntry]:
        columns = self.assign_columns(line, anchors)

        order = self._valid_order(columns.get(ORDER, ""))
        reference = clean_reference(columns.get(REFERENCE, ""), self.settings.min_reference_length)
        if order is None or reference is None:
            return None

        packages = 0
        if PACKAGES in columns:
            digits = re.sub(r"\D", "", columns[PACKAGES])
            packages = int(digits) if digits else 0

        return ManifestEntry.create(order, reference, packages)

    def _valid_order(self, text: str) -> Optional[str]:
        digits = re.sub(r"\D", "", text)
        if self.settings.order_min_digits <= len(digits) <= self.settings.order_max_digits:
            return digits
        return None
