"""Image transform stage: rotate, crop, upscale and filter label regions.

Every crop in the system goes through ``transform_region`` so barcode
decoding, glyph OCR and debug snapshots share one coordinate convention:
- Rotation (0, 90, 180, 270 clockwise) applied to the whole page first,
  canvas dimensions swapped for 90/270 so nothing is clipped
- Fractional crop area mapped onto the rotated canvas
- Upscale (>= 3x, cubic) BEFORE filtering, so strokes stay several px wide
- One filter from the closed FilterKind set
"""

import cv2
import numpy as np
from PIL import Image
import io
from enum import Enum
from typing import Optional, Tuple
from dataclasses import dataclass
import logging

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

VALID_ROTATIONS = (0, 90, 180, 270)
MIN_UPSCALE = 3.0

# Luminance cutoff for the binarized-threshold filter
THRESHOLD_CUTOFF = 120


class FilterKind(str, Enum):
    """Pixel transform variants, gentlest first."""
    RAW = "raw"
    GRAYSCALE = "grayscale"
    THRESHOLD = "threshold"
    HIGH_CONTRAST = "high-contrast"


@dataclass(frozen=True)
class CropArea:
    """Crop rectangle as fractions of the (rotated) page."""
    x: float
    y: float
    w: float
    h: float

    def __post_init__(self):
        for name in ("x", "y", "w", "h"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"CropArea.{name} must be within [0, 1], got {value}")
        if self.w <= 0 or self.h <= 0:
            raise ValueError("CropArea width and height must be positive")


def load_image(image_bytes: bytes) -> np.ndarray:
    """Load image from bytes as a BGR array."""
    # Use PIL to handle various formats, then convert to OpenCV
    pil_image = Image.open(io.BytesIO(image_bytes))

    if pil_image.mode != "RGB":
        pil_image = pil_image.convert("RGB")

    image = np.array(pil_image)
    return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)


def encode_png(image: np.ndarray) -> bytes:
    """Encode an array as PNG bytes (debug snapshots, vision fallback)."""
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("Failed to encode image as PNG")
    return buffer.tobytes()


def to_gray(image: np.ndarray) -> np.ndarray:
    """Grayscale view of a BGR or already-gray array."""
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def adjust_contrast(gray: np.ndarray, contrast: float, brightness: float = 1.0) -> np.ndarray:
    """Contrast around mid-grey, then brightness multiply, clipped to uint8."""
    out = (gray.astype(np.float32) - 128.0) * contrast + 128.0
    out = out * brightness
    return np.clip(out, 0, 255).astype(np.uint8)


def rotate_image(image: np.ndarray, rotation: int) -> np.ndarray:
    """
    Rotate a page clockwise by 0, 90, 180 or 270 degrees.

    90/270 swap the canvas dimensions so the whole page stays visible.
    """
    if rotation == 0:
        return image
    elif rotation == 90:
        return cv2.rotate(image, cv2.ROTATE_90_CLOCKWISE)
    elif rotation == 180:
        return cv2.rotate(image, cv2.ROTATE_180)
    elif rotation == 270:
        return cv2.rotate(image, cv2.ROTATE_90_COUNTERCLOCKWISE)
    raise ValueError(f"Unsupported rotation {rotation}; expected one of {VALID_ROTATIONS}")


def crop_bounds(area: CropArea, width: int, height: int) -> Tuple[int, int, int, int]:
    """Map a fractional area to pixel bounds (x0, y0, x1, y1), at least 1px each way."""
    x0 = min(width - 1, max(0, int(round(area.x * width))))
    y0 = min(height - 1, max(0, int(round(area.y * height))))
    x1 = min(width, max(x0 + 1, int(round((area.x + area.w) * width))))
    y1 = min(height, max(y0 + 1, int(round((area.y + area.h) * height))))
    return x0, y0, x1, y1


def apply_filter(image: np.ndarray, kind: FilterKind) -> np.ndarray:
    """Apply one filter. Non-raw filters return a single-channel image."""
    kind = FilterKind(kind)
    if kind is FilterKind.RAW:
        return image
    elif kind is FilterKind.GRAYSCALE:
        return adjust_contrast(to_gray(image), contrast=1.5)
    elif kind is FilterKind.THRESHOLD:
        # Pixels >= cutoff become white, everything darker pure black
        _, binary = cv2.threshold(to_gray(image), THRESHOLD_CUTOFF - 1, 255, cv2.THRESH_BINARY)
        return binary
    elif kind is FilterKind.HIGH_CONTRAST:
        return adjust_contrast(to_gray(image), contrast=3.5, brightness=1.1)
    raise ValueError(f"Unsupported filter: {kind!r}")


def transform_region(
    image: np.ndarray,
    area: Optional[CropArea],
    rotation: int = 0,
    kind: FilterKind = FilterKind.RAW,
    scale: Optional[float] = None,
) -> np.ndarray:
    """
    Rotate, crop, upscale and filter a sub-region of a page.

    With no area the whole rotated page is filtered at its own resolution;
    only real sub-regions are upscaled.

    Args:
        image: Full page as BGR (or gray) array
        area: Fractional crop area on the rotated page (None = whole page, not upscaled)
        rotation: Clockwise rotation applied before cropping
        kind: Filter to apply after upscaling
        scale: Upscale factor, defaults to settings.upscale_factor

    Returns:
        The transformed region. Output is deterministic for identical inputs.
    """
    if scale is None:
        scale = get_settings().upscale_factor
    if scale < MIN_UPSCALE:
        raise ValueError(f"Upscale factor must be >= {MIN_UPSCALE}, got {scale}")

    rotated = rotate_image(image, rotation)
    if area is None:
        return apply_filter(rotated, kind)

    height, width = rotated.shape[:2]
    x0, y0, x1, y1 = crop_bounds(area, width, height)
    region = rotated[y0:y1, x0:x1]

    out_w = max(1, int(round((x1 - x0) * scale)))
    out_h = max(1, int(round((y1 - y0) * scale)))
    upscaled = cv2.resize(region, (out_w, out_h), interpolation=cv2.INTER_CUBIC)

    return apply_filter(upscaled, kind)


def get_image_info(image_bytes: bytes) -> dict:
    """Get basic image information without decoding to an array."""
    pil_image = Image.open(io.BytesIO(image_bytes))
    return {
        "format": pil_image.format,
        "mode": pil_image.mode,
        "width": pil_image.width,
        "height": pil_image.height,
        "size_bytes": len(image_bytes),
        "size_mb": len(image_bytes) / (1024 * 1024)
    }


def validate_image(image_bytes: bytes, filename: str, settings: Optional[Settings] = None) -> Tuple[bool, str]:
    """
    Validate an uploaded label/manifest page.

    Returns:
        Tuple of (is_valid, error_message)
    """
    settings = settings or get_settings()

    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in settings.allowed_extensions:
        allowed = ", ".join(sorted(settings.allowed_extensions)).upper()
        return False, f"Invalid file type. Allowed formats: {allowed}"

    size_mb = len(image_bytes) / (1024 * 1024)
    if size_mb > settings.max_upload_size_mb:
        return False, f"Image exceeds {settings.max_upload_size_mb}MB upload limit."

    try:
        info = get_image_info(image_bytes)
    except Exception as e:
        return False, f"Unable to read image: {str(e)}"

    min_dim = settings.min_image_dimension
    if info["width"] < min_dim or info["height"] < min_dim:
        return False, f"Image too small. Minimum dimensions: {min_dim}x{min_dim} pixels."

    return True, ""
