"""Positional text tokens shared by the manifest learner and label extraction.

Coordinates are in the producing page's space: origin bottom-left, y grows
upward. Tokens coming from OCR (top-left pixel space) are flipped on the way
in so every consumer sees the same orientation.
"""

from dataclasses import dataclass, replace
from typing import Any, Iterable, List, Sequence
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    """One positional text unit."""
    text: str
    x: float
    y: float
    width: float
    height: float = 0.0
    line_index: int = 0
    token_index: int = 0

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2


def same_line(y1: float, y2: float, quantum: float) -> bool:
    """Whether two y coordinates are close enough to share a text line."""
    if quantum <= 0:
        raise ValueError(f"line quantum must be positive, got {quantum}")
    return abs(y1 - y2) <= quantum


def group_into_lines(tokens: Iterable[Token], quantum: float) -> List[List[Token]]:
    """
    Group tokens into lines by y distance.

    Tokens are walked top to bottom; a new line starts only when the gap to
    the previous token's y exceeds ``quantum``, so a couple of pixels of OCR
    jitter never splits a line.

    Lines come back top to bottom (descending y, since the origin is at the
    bottom of the page); tokens within a line are ordered left to right.
    """
    lines: List[List[Token]] = []
    previous_y = None
    for token in sorted(tokens, key=lambda t: -t.y):
        if previous_y is None or not same_line(previous_y, token.y, quantum):
            lines.append([])
        lines[-1].append(token)
        previous_y = token.y

    return [sorted(line, key=lambda t: (t.x, t.token_index)) for line in lines]


def index_tokens(tokens: Sequence[Token], quantum: float) -> List[Token]:
    indexed = []
    for line_idx, line in enumerate(group_into_lines(tokens, quantum)):
        for tok_idx, token in enumerate(line):
            indexed.append(replace(token, line_index=line_idx, token_index=tok_idx))
    return indexed


def tokens_from_text_items(items: Iterable[dict], quantum: float = 4.0) -> List[Token]:
    """
    Build tokens from a page's embedded text items.

    Items follow the PDF.js text-content shape:
    ``{"str": "FBA123", "transform": [a, b, c, d, x, y], "width": w, "height": h}``.
    Whitespace-only items are dropped.
    """
    raw = []
    for item in items:
        text = str(item.get("str", "")).strip()
        if not text:
            continue
        transform = item.get("transform") or [1, 0, 0, 1, 0, 0]
        if len(transform) < 6:
            logger.debug(f"Skipping text item with malformed transform: {item!r}")
            continue
        raw.append(Token(
            text=text,
            x=float(transform[4]),
            y=float(transform[5]),
            width=float(item.get("width") or 0.0),
            height=float(item.get("height") or abs(transform[3]) or 0.0),
        ))
    return index_tokens(raw, quantum)


def tokens_from_ocr_boxes(boxes: Iterable[Any], page_height: float, quantum: float = 4.0) -> List[Token]:
    """
    Build tokens from full-page OCR word boxes.

    Boxes expose ``text``, ``left``, ``bottom``, ``width`` and ``height`` in
    top-left pixel space; y is flipped so the token sits on its baseline in
    bottom-left space.
    """
    raw = [
        Token(
            text=box.text,
            x=float(box.left),
            y=float(page_height - box.bottom),
            width=float(box.width),
            height=float(box.height),
        )
        for box in boxes
        if box.text.strip()
    ]
    return index_tokens(raw, quantum)


def joined_text(tokens: Iterable[Token]) -> str:
    """Reading-order text of a token list (lines by line_index, then token_index)."""
    ordered = sorted(tokens, key=lambda t: (t.line_index, t.token_index))
    return " ".join(t.text for t in ordered)
