"""DataMatrix decoding and carrier payload parsing.

Decoding walks FILTER_ORDER through the image transform stage and stops at
the first variant that yields a payload: some filters wipe out faint codes
while rescuing others, and the gentle ones succeed on most labels.

Carrier payloads ("S" sentinel) are fixed-width: the reference and the
package total sit at fixed offsets, they are NOT delimited fields.
"""

import re
import numpy as np
from typing import Callable, Optional, List
from dataclasses import dataclass
import logging

from .imaging import CropArea, FilterKind, transform_region, to_gray
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

FILTER_ORDER = (
    FilterKind.RAW,
    FilterKind.GRAYSCALE,
    FilterKind.THRESHOLD,
    FilterKind.HIGH_CONTRAST,
)

# Fixed-width carrier layout
CARRIER_SENTINEL = "S"
CARRIER_MIN_LENGTH = 15
CARRIER_REF_SLICE = slice(1, 10)
CARRIER_TOTAL_SLICE = slice(12, 15)

CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
KNOWN_PREFIX_PATTERN = re.compile(r"(FBA[A-Z0-9]{6,10})|(X00[A-Z0-9]{6,10})", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedPayload:
    """Reference and package numbering read from a payload."""
    ref: str
    sequence: int = 1
    total_from_payload: Optional[int] = None


@dataclass
class BarcodeResult:
    """A decoded payload and the crop that produced it."""
    raw_text: str
    parsed: Optional[ParsedPayload] = None
    filter_kind: Optional[FilterKind] = None
    image: Optional[np.ndarray] = None


def parse_payload(text: Optional[str]) -> Optional[ParsedPayload]:
    """
    Parse a decoded payload into a reference.

    Order of attempts:
    1. Carrier format: sentinel + fixed-offset reference and package total
    2. Known marketplace prefixes (FBA..., X00...)
    3. A 9-char word mixing letters and digits
    4. An 8-digit numeric word
    """
    if not text:
        return None

    cleaned = CONTROL_CHARS.sub("", text)

    if cleaned.startswith(CARRIER_SENTINEL) and len(cleaned) >= CARRIER_MIN_LENGTH:
        ref = cleaned[CARRIER_REF_SLICE].upper()
        total_str = cleaned[CARRIER_TOTAL_SLICE]
        total = int(total_str) if total_str.isdigit() else None
        return ParsedPayload(ref=ref, sequence=1, total_from_payload=total)

    match = KNOWN_PREFIX_PATTERN.search(cleaned)
    if match:
        return ParsedPayload(ref=match.group(0).upper())

    words = [w for w in re.split(r"[^A-Za-z0-9]", cleaned) if w]
    for word in words:
        if len(word) == 9 and re.search(r"[A-Za-z]", word) and re.search(r"[0-9]", word):
            return ParsedPayload(ref=word.upper())
    for word in words:
        if len(word) == 8 and word.isdigit():
            return ParsedPayload(ref=word)

    return None


def _zxing_decode(image: np.ndarray) -> Optional[str]:
    """Decode the first DataMatrix found with zxing-cpp."""
    import zxingcpp

    results = zxingcpp.read_barcodes(to_gray(image), formats=zxingcpp.BarcodeFormat.DataMatrix)
    for result in results:
        if result.text:
            return result.text
    return None


class BarcodeDecoder:
    """Tries each filter variant over the barcode zone until one decodes."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        decode_fn: Optional[Callable[[np.ndarray], Optional[str]]] = None,
        filters: Optional[List[FilterKind]] = None,
    ):
        self.settings = settings or get_settings()
        self._decode = decode_fn or _zxing_decode
        self.filters = tuple(filters) if filters else FILTER_ORDER

    def decode(
        self,
        image: np.ndarray,
        area: Optional[CropArea] = None,
        rotation: int = 0,
    ) -> Optional[BarcodeResult]:
        """
        Decode the barcode zone of a label.

        Returns:
            BarcodeResult for the first filter that yields a payload, or None
            when every variant fails.
        """
        for kind in self.filters:
            crop = transform_region(image, area, rotation, kind, scale=self.settings.upscale_factor)
            try:
                text = self._decode(crop)
            except Exception as e:
                logger.warning(f"Barcode decode raised on filter={kind.value}: {e}")
                continue

            if text:
                parsed = parse_payload(text)
                logger.info(
                    f"Barcode decoded with filter={kind.value}, "
                    f"ref={parsed.ref if parsed else None}"
                )
                return BarcodeResult(raw_text=text, parsed=parsed, filter_kind=kind, image=crop)

            logger.debug(f"No barcode with filter={kind.value}")

        return None
