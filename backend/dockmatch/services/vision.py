"""Optional cloud vision fallback (last resort, cost-limited).

Only called when embedded text, barcode and OCR-zone extraction all failed.
Authorization failures are raised so the run can stop instead of burning
more failing calls; every other API error counts as "nothing found".
"""

import base64
from typing import Optional, Protocol
import logging

from .normalizer import clean_reference
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

VISION_PROMPT = (
    "Extract the shipping reference (like FBA... or X00..., or the carrier "
    "reference printed under the barcode) from this label crop. "
    "Return ONLY the reference string, or NONE if there is no reference."
)


class VisionAuthorizationError(RuntimeError):
    """Credentials were rejected by the vision service."""


class VisionFallback(Protocol):
    """Anything that can turn a PNG crop into a reference guess."""

    def extract_reference(self, png_bytes: bytes) -> Optional[str]:
        ...


def encode_png_data_url(png_bytes: bytes) -> str:
    """Encode PNG bytes as a base64 data URL."""
    b64 = base64.b64encode(png_bytes).decode("utf-8")
    return f"data:image/png;base64,{b64}"


class OpenAIVisionClient:
    """Vision fallback via the OpenAI chat completions API."""

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.settings.openai_api_key, timeout=self.settings.vision_timeout_s)
        return self._client

    def extract_reference(self, png_bytes: bytes) -> Optional[str]:
        import openai

        try:
            response = self._get_client().chat.completions.create(
                model=self.settings.vision_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_PROMPT},
                        {"type": "image_url", "image_url": {"url": encode_png_data_url(png_bytes)}},
                    ],
                }],
                max_tokens=32,
                temperature=0,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise VisionAuthorizationError(f"Vision service rejected credentials: {e}") from e
        except openai.OpenAIError as e:
            logger.warning(f"Vision fallback failed: {e}")
            return None

        content = (response.choices[0].message.content or "").strip()
        if not content or content.upper() == "NONE":
            return None
        return clean_reference(content, self.settings.min_reference_length)


def build_vision_fallback(settings: Optional[Settings] = None) -> Optional[VisionFallback]:
    """The configured vision fallback, or None when disabled / unconfigured."""
    settings = settings or get_settings()
    if not settings.vision_assist_enabled:
        return None
    if not settings.openai_api_key:
        logger.warning("Vision assist enabled but no OpenAI API key configured; fallback disabled")
        return None
    return OpenAIVisionClient(settings)
