"""Match extracted references against the manifest.

Rules, first satisfied wins, ties broken by manifest order:
(a) exact equality of normalized keys
(b) candidate longer than 6 and contained in the entry's key
(c) entry's key longer than 6 and contained in the candidate

Barcode and OCR reads are often truncated or carry stray leading/trailing
characters; containment recovers those, the length floor stops short
numeric fragments from matching everything.
"""

from typing import List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum
import logging

from rapidfuzz import fuzz

from .manifest import ManifestEntry
from .normalizer import normalize_reference

logger = logging.getLogger(__name__)

CONTAINMENT_MIN_LENGTH = 6  # Strictly greater than this to use containment


class MatchRule(str, Enum):
    """Which rule produced a match."""
    EXACT = "exact"
    CANDIDATE_IN_ENTRY = "candidate_in_entry"
    ENTRY_IN_CANDIDATE = "entry_in_candidate"


@dataclass(frozen=True)
class MatchOutcome:
    """A manifest hit."""
    entry: ManifestEntry
    rule: MatchRule
    confidence: float


@dataclass(frozen=True)
class MatchSuggestion:
    """A near miss shown to the operator when nothing matched."""
    order_number: str
    amazon_ref: str
    confidence: float


class FuzzyMatcher:
    """Holds a manifest with pre-normalized reference keys."""

    def __init__(self, entries: Sequence[ManifestEntry]):
        self.entries: List[ManifestEntry] = list(entries)
        self._keys = [normalize_reference(e.amazon_ref) for e in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def find(self, candidate: Optional[str]) -> Optional[MatchOutcome]:
        """Return the first manifest entry matching ``candidate``, or None."""
        key = normalize_reference(candidate or "")
        if not key:
            return None

        for entry, entry_key in zip(self.entries, self._keys):
            if not entry_key:
                continue
            rule = None
            if key == entry_key:
                rule = MatchRule.EXACT
            elif len(key) > CONTAINMENT_MIN_LENGTH and key in entry_key:
                rule = MatchRule.CANDIDATE_IN_ENTRY
            elif len(entry_key) > CONTAINMENT_MIN_LENGTH and entry_key in key:
                rule = MatchRule.ENTRY_IN_CANDIDATE

            if rule is not None:
                confidence = 1.0 if rule is MatchRule.EXACT else fuzz.ratio(key, entry_key) / 100.0
                logger.debug(f"Matched '{candidate}' -> order {entry.order_number} ({rule.value})")
                return MatchOutcome(entry=entry, rule=rule, confidence=confidence)

        return None

    def suggest(self, candidate: Optional[str], limit: int = 3, min_score: float = 0.5) -> List[MatchSuggestion]:
        """
        Closest manifest entries by similarity, for diagnosing a miss.

        Purely informational; never used to decide a match.
        """
        key = normalize_reference(candidate or "")
        if not key:
            return []

        scored = []
        for idx, (entry, entry_key) in enumerate(zip(self.entries, self._keys)):
            score = fuzz.ratio(key, entry_key) / 100.0
            if score >= min_score:
                scored.append((-score, idx, entry, score))
        scored.sort(key=lambda s: (s[0], s[1]))

        return [
            MatchSuggestion(order_number=entry.order_number, amazon_ref=entry.amazon_ref, confidence=round(score, 3))
            for _, _, entry, score in scored[:limit]
        ]
