"""OCR resource built on EasyOCR (PyTorch-based).

The reader is an explicit, scoped resource rather than a process singleton:
- Created lazily on the first acquire()
- Reused while the requested mode stays the same
- Torn down and recreated when the mode changes (mode is part of identity)
- Released deterministically via release() / the context manager

Modes:
- STRIP: one line of text, recognition only, alphanumeric allowlist
- SINGLE_CHAR: one segmented glyph, recognition only, alphanumeric allowlist
- FULL_PAGE: detection + recognition, word boxes for manifest tokens
"""

import numpy as np
from typing import Callable, Optional, List, Any
from dataclasses import dataclass
from enum import Enum
import logging
import os
import unicodedata
import re

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

ALNUM_ALLOWLIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
# Digits plus the separators of "2 de 3", "2 of 3" and "2/3"
QUANTITY_ALLOWLIST = "0123456789/ deofutDEOFUT"


class OCRMode(str, Enum):
    """Call pattern the reader is configured for."""
    STRIP = "strip"
    SINGLE_CHAR = "single_char"
    FULL_PAGE = "full_page"


class OCRUnavailableError(RuntimeError):
    """The OCR engine could not be created."""


@dataclass
class OCRBox:
    """Represents a detected text box with position and confidence."""
    text: str
    confidence: float
    bbox: List[List[int]]  # [[x1,y1], [x2,y2], [x3,y3], [x4,y4]]

    @property
    def top(self) -> int:
        return min(p[1] for p in self.bbox)

    @property
    def bottom(self) -> int:
        return max(p[1] for p in self.bbox)

    @property
    def left(self) -> int:
        return min(p[0] for p in self.bbox)

    @property
    def right(self) -> int:
        return max(p[0] for p in self.bbox)

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def width(self) -> int:
        return self.right - self.left


def normalize_ocr_text(text: str) -> str:
    """
    Normalize OCR text output.
    - Unicode NFKC normalization
    - Collapse whitespace
    - Strip leading/trailing whitespace
    """
    normalized = unicodedata.normalize('NFKC', text)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def _default_reader_factory(settings: Settings, mode: OCRMode) -> Any:
    """Create an EasyOCR reader. Imported lazily: torch start-up is slow."""
    try:
        import easyocr
        import torch
    except ImportError as e:
        raise OCRUnavailableError(f"EasyOCR is not installed: {e}") from e

    torch.set_num_threads(max(1, settings.ocr_num_threads))

    model_dir = settings.ocr_model_dir or os.environ.get('EASYOCR_MODULE_PATH')
    kwargs = {"gpu": settings.ocr_gpu, "verbose": False}
    if model_dir:
        kwargs["model_storage_directory"] = model_dir

    logger.info(f"Initializing EasyOCR reader for mode={mode.value}")
    try:
        return easyocr.Reader([settings.ocr_lang], **kwargs)
    except Exception as e:
        raise OCRUnavailableError(f"Failed to initialize EasyOCR: {e}") from e


class OCRWorker:
    """A reader bound to one mode. Only valid until its resource changes mode or is released."""

    def __init__(self, reader: Any, mode: OCRMode):
        self._reader = reader
        self.mode = mode

    def read_text(self, image: np.ndarray, allowlist: str = ALNUM_ALLOWLIST) -> str:
        """
        Recognize a strip or single glyph as text (no detection pass).

        Only characters in ``allowlist`` are emitted.

        Engine errors are logged and produce an empty string.
        """
        if self.mode is OCRMode.FULL_PAGE:
            raise ValueError("read_text() needs a STRIP or SINGLE_CHAR worker")
        try:
            results = self._reader.recognize(
                image,
                allowlist=allowlist,
                detail=0,
                paragraph=False,
                decoder='greedy',
                batch_size=1,
            )
        except Exception as e:
            logger.warning(f"OCR recognize failed ({self.mode.value}): {e}")
            return ""

        text = normalize_ocr_text(" ".join(str(r) for r in results or []))
        if self.mode is OCRMode.SINGLE_CHAR:
            text = text.replace(" ", "")[:1]
        return text

    def read_words(self, image: np.ndarray) -> List[OCRBox]:
        """Detect and recognize every word on a page."""
        if self.mode is not OCRMode.FULL_PAGE:
            raise ValueError("read_words() needs a FULL_PAGE worker")
        try:
            results = self._reader.readtext(
                image,
                decoder='greedy',
                batch_size=1,
                paragraph=False,
                detail=1,
            )
        except Exception as e:
            logger.warning(f"OCR readtext failed: {e}")
            return []

        boxes = []
        for bbox_points, text, confidence in results or []:
            text = normalize_ocr_text(text)
            if not text:
                continue
            boxes.append(OCRBox(
                text=text,
                confidence=float(confidence),
                bbox=[[int(p[0]), int(p[1])] for p in bbox_points],
            ))
        return boxes


class OCRResource:
    """Owns the OCR reader for one processing session."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        reader_factory: Optional[Callable[[Settings, OCRMode], Any]] = None,
    ):
        self.settings = settings or get_settings()
        self._factory = reader_factory or _default_reader_factory
        self._reader = None
        self._mode: Optional[OCRMode] = None
        self.created_count = 0

    @property
    def mode(self) -> Optional[OCRMode]:
        return self._mode

    @property
    def is_active(self) -> bool:
        return self._reader is not None

    def acquire(self, mode: OCRMode) -> OCRWorker:
        """Return a worker for ``mode``, recreating the reader if the mode changed."""
        mode = OCRMode(mode)
        if self._reader is not None and self._mode is not mode:
            logger.debug(f"OCR mode switch {self._mode.value} -> {mode.value}, recreating reader")
            self.release()
        if self._reader is None:
            self._reader = self._factory(self.settings, mode)
            self._mode = mode
            self.created_count += 1
        return OCRWorker(self._reader, mode)

    def release(self) -> None:
        """Drop the reader. Safe to call repeatedly."""
        if self._reader is not None:
            logger.debug(f"Releasing OCR reader (mode={self._mode.value})")
        self._reader = None
        self._mode = None

    def __enter__(self) -> "OCRResource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
