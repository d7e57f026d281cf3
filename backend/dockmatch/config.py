"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Dock List Label Matcher API"
    debug: bool = False

    # CORS - Allow all origins for prototype (restrict in production)
    cors_origins: list[str] = ["*"]

    # Upload limits
    max_upload_size_mb: int = 15
    min_image_dimension: int = 100  # Rendered label pages are never this small
    allowed_extensions: set = {"png", "jpg", "jpeg", "webp", "bmp", "tif", "tiff"}
    allowed_manifest_extensions: set = {"csv", "tsv", "txt"}
    max_labels_per_run: int = 500

    # OCR settings (EasyOCR)
    ocr_lang: str = "en"
    ocr_model_dir: str | None = None  # Falls back to EASYOCR_MODULE_PATH / EasyOCR default
    ocr_num_threads: int = 2
    ocr_gpu: bool = False

    # Image transform stage
    upscale_factor: float = 3.0  # Segmentation needs several px of stroke width

    # Reference extraction
    min_reference_length: int = 5  # Shorter reads are treated as "nothing found"
    package_info_format: str = "{sequence}/{total}"

    # Spatial pattern learner (page units, usually PDF points)
    line_quantum: float = 4.0
    column_tolerance: float = 30.0
    order_min_digits: int = 6
    order_max_digits: int = 10

    # Vision Assist (optional cloud fallback, last resort)
    vision_assist_enabled: bool = False
    openai_api_key: str | None = None
    vision_model: str = "gpt-4o-mini"
    vision_timeout_s: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
