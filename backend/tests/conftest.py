"""Shared fixtures and offline fakes for the OCR engine, DataMatrix reader and vision API."""

import io

import numpy as np
import pytest
from PIL import Image

from dockmatch.config import Settings
from dockmatch.services.barcode import BarcodeDecoder
from dockmatch.services.ocr import OCRResource
from dockmatch.services.vision import VisionAuthorizationError


class FakeReader:
    """Scripted stand-in for easyocr.Reader."""

    def __init__(self, texts=None, words=None):
        self.texts = list(texts or [])
        self.words = list(words or [])
        self.recognize_calls = 0
        self.allowlists = []

    def recognize(self, image, allowlist=None, **kwargs):
        self.recognize_calls += 1
        self.allowlists.append(allowlist)
        if not self.texts:
            return []
        text = self.texts.pop(0)
        if allowlist is not None:
            text = "".join(c for c in text if c in allowlist)
        return [text]

    def readtext(self, image, **kwargs):
        return self.words


class FakeReaderFactory:
    """Hands out one FakeReader, recording every mode it was created for."""

    def __init__(self, reader=None):
        self.reader = reader or FakeReader()
        self.modes = []

    def __call__(self, settings, mode):
        self.modes.append(mode)
        return self.reader


class ScriptedDecoder:
    """decode_fn for BarcodeDecoder returning scripted payloads per call."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = 0

    def __call__(self, image):
        self.calls += 1
        if self.payloads:
            return self.payloads.pop(0)
        return None


class FakeVision:
    """Vision fallback returning a fixed reference, or raising on auth."""

    def __init__(self, reference=None, unauthorized=False):
        self.reference = reference
        self.unauthorized = unauthorized
        self.calls = []

    def extract_reference(self, png_bytes):
        self.calls.append(png_bytes)
        if self.unauthorized:
            raise VisionAuthorizationError("Vision service rejected credentials: 401")
        return self.reference


@pytest.fixture
def settings():
    """Settings independent of the environment."""
    return Settings(vision_assist_enabled=False, openai_api_key=None)


@pytest.fixture
def label_image():
    """White 400x300 BGR page with a few dark blocks."""
    img = np.full((300, 400, 3), 255, dtype=np.uint8)
    img[40:100, 260:360] = 0
    img[240:270, 40:60] = 0
    img[240:270, 80:100] = 0
    return img


@pytest.fixture
def label_png_bytes(label_image):
    """label_image encoded as PNG."""
    buffer = io.BytesIO()
    Image.fromarray(label_image[:, :, ::-1]).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def reader_factory():
    return FakeReaderFactory()


@pytest.fixture
def ocr_resource(settings, reader_factory):
    return OCRResource(settings, reader_factory=reader_factory)


@pytest.fixture
def no_barcode(settings):
    """Decoder that never finds a DataMatrix."""
    return BarcodeDecoder(settings, decode_fn=lambda image: None)
