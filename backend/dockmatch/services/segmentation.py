"""Glyph segmentation by vertical ink projection.

Short alphanumeric references OCR far better one character at a time, so the
OCR zone strip is sliced into glyphs before recognition:
1. Boost contrast and binarize the (already upscaled) strip
2. Mark every pixel column that holds any ink
3. Each maximal run of inked columns wider than 1px is one glyph
4. Tighten each run vertically, then cut it from the UNBINARIZED strip and
   scale it to a common height so stroke thickness is comparable
"""

import cv2
import numpy as np
from typing import List
from dataclasses import dataclass, field
import logging

from .imaging import adjust_contrast, to_gray

logger = logging.getLogger(__name__)

INK_THRESHOLD = 140  # Luminance below this counts as ink after the contrast boost
GLYPH_TARGET_HEIGHT = 64
GLYPH_MIN_WIDTH = 12
GLYPH_PADDING = 20
STRIP_MARGIN = 32
STRIP_GAP = 20


@dataclass(frozen=True)
class Glyph:
    """Bounding box of one ink run within a strip."""
    x: int
    y: int
    w: int
    h: int


@dataclass
class SegmentationResult:
    """Segmented glyphs plus a side-by-side composite for inspection."""
    strip: np.ndarray
    glyphs: List[Glyph] = field(default_factory=list)
    glyph_images: List[np.ndarray] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.glyphs


def binarize_for_segmentation(strip: np.ndarray) -> np.ndarray:
    """Boolean ink mask (True = ink) after a strong contrast boost."""
    boosted = adjust_contrast(to_gray(strip), contrast=3.0, brightness=1.05)
    return boosted < INK_THRESHOLD


def find_ink_runs(ink: np.ndarray) -> List[tuple]:
    """Maximal (start, end) column runs that contain ink, end exclusive."""
    has_ink = ink.any(axis=0)
    runs = []
    start = None
    for x, inked in enumerate(has_ink):
        if inked and start is None:
            start = x
        elif not inked and start is not None:
            runs.append((start, x))
            start = None
    if start is not None:
        runs.append((start, len(has_ink)))
    return runs


def _white(image: np.ndarray):
    return (255, 255, 255) if image.ndim == 3 else 255


def _scale_glyph(crop: np.ndarray, glyph: Glyph) -> np.ndarray:
    draw_w = max(GLYPH_MIN_WIDTH, int(round(glyph.w * GLYPH_TARGET_HEIGHT / glyph.h)))
    return cv2.resize(crop, (draw_w, GLYPH_TARGET_HEIGHT), interpolation=cv2.INTER_CUBIC)


def _compose_strip(scaled: List[np.ndarray], like: np.ndarray) -> np.ndarray:
    total_w = sum(g.shape[1] for g in scaled) + STRIP_GAP * len(scaled) + STRIP_MARGIN * 2
    total_w = max(100, total_w)
    shape = (GLYPH_TARGET_HEIGHT + STRIP_MARGIN * 2, total_w)
    if like.ndim == 3:
        shape = shape + (like.shape[2],)
    canvas = np.full(shape, 255, dtype=np.uint8)

    cur_x = STRIP_MARGIN
    for g in scaled:
        canvas[STRIP_MARGIN:STRIP_MARGIN + GLYPH_TARGET_HEIGHT, cur_x:cur_x + g.shape[1]] = g
        cur_x += g.shape[1] + STRIP_GAP
    return canvas


def segment_glyphs(strip: np.ndarray) -> SegmentationResult:
    """
    Slice a strip into per-character images, left to right.

    Args:
        strip: Upscaled OCR zone (BGR or gray), not yet binarized

    Returns:
        SegmentationResult; empty when no ink runs are found, in which case
        the caller should fall back to whole-strip OCR.
    """
    ink = binarize_for_segmentation(strip)
    glyphs = []

    for start, end in find_ink_runs(ink):
        width = end - start
        if width <= 1:
            continue
        rows = np.flatnonzero(ink[:, start:end].any(axis=1))
        if rows.size == 0:
            continue
        min_y, max_y = int(rows[0]), int(rows[-1])
        if max_y <= min_y:
            continue
        glyphs.append(Glyph(x=start, y=min_y, w=width, h=max_y - min_y + 1))

    if not glyphs:
        logger.debug("Ink projection found no glyphs")
        return SegmentationResult(strip=strip)

    scaled = []
    glyph_images = []
    for glyph in glyphs:
        crop = strip[glyph.y:glyph.y + glyph.h, glyph.x:glyph.x + glyph.w]
        resized = _scale_glyph(crop, glyph)
        scaled.append(resized)
        glyph_images.append(cv2.copyMakeBorder(
            resized, GLYPH_PADDING, GLYPH_PADDING, GLYPH_PADDING, GLYPH_PADDING,
            cv2.BORDER_CONSTANT, value=_white(resized)
        ))

    logger.debug(f"Segmented {len(glyphs)} glyphs from {strip.shape[1]}px strip")
    return SegmentationResult(
        strip=_compose_strip(scaled, strip),
        glyphs=glyphs,
        glyph_images=glyph_images,
    )
