"""Reference normalization and text heuristics.

normalize_reference() builds the comparison key used on BOTH sides of a
match (manifest and label), so OCR confusions between look-alike glyphs
cancel out. The key is never displayed.
"""

import re
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


# One-directional look-alike table, tuned on real carrier labels.
# Digits are never rewritten, which keeps normalization idempotent.
CONFUSABLES = {
    "O": "0", "Q": "0", "D": "0",
    "I": "1", "L": "1", "J": "1", "T": "1", "|": "1",
    "S": "5",
    "Z": "2",
    "E": "6", "G": "6", "B": "6",
    "Y": "9",
}
_CONFUSABLE_TABLE = str.maketrans(CONFUSABLES)

MAX_REFERENCE_LENGTH = 40

# Marketplace reference first, then any long alphanumeric run
FBA_PATTERN = re.compile(r"FBA[A-Z0-9]+", re.IGNORECASE)
LONG_REF_PATTERN = re.compile(r"[A-Z0-9]{12,30}")

# "2 de 3", "2 of 3", "2 out of 3", "2/3"
PACKAGE_PATTERN = re.compile(r"(\d+)\s*(?:de|of|out\s+of|/)\s*(\d+)", re.IGNORECASE)


def normalize_reference(raw: str) -> str:
    """
    Canonical comparison key: uppercase, no whitespace, look-alikes mapped.

    >>> normalize_reference("fba 12O4")
    'F6A1204'
    """
    if not raw:
        return ""
    key = re.sub(r"\s+", "", raw.upper())
    return key.translate(_CONFUSABLE_TABLE)


def clean_reference(raw: Optional[str], min_length: int = 5) -> Optional[str]:
    """
    Reduce a raw read to an uppercase alphanumeric reference.

    Returns None when what is left is too short or implausibly long.
    """
    if not raw:
        return None
    cleaned = re.sub(r"[^A-Z0-9]", "", raw.upper())
    if len(cleaned) < min_length or len(cleaned) > MAX_REFERENCE_LENGTH:
        return None
    return cleaned


def extract_reference_from_text(text: Optional[str]) -> Optional[str]:
    """Find a shipping reference in free label text (embedded text or OCR output)."""
    if not text:
        return None
    match = FBA_PATTERN.search(text)
    if match:
        return match.group(0).upper()
    match = LONG_REF_PATTERN.search(text.upper())
    if match:
        return match.group(0)
    return None


def parse_package_info(text: Optional[str]) -> Optional[Tuple[int, int]]:
    """Read a "sequence of total" pair, rejecting sequence 0 or sequence > total."""
    if not text:
        return None
    match = PACKAGE_PATTERN.search(text)
    if not match:
        return None
    sequence, total = int(match.group(1)), int(match.group(2))
    if sequence < 1 or total < sequence:
        logger.debug(f"Ignoring implausible package info {sequence}/{total}")
        return None
    return sequence, total
