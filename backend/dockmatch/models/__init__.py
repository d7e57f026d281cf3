"""Pydantic models for request/response schemas."""

from .schemas import (
    LabelStatus,
    CropAreaModel,
    CaptureRulesModel,
    TokenModel,
    ManifestEntryModel,
    ManifestRowError,
    ManifestResponse,
    LearnManifestRequest,
    TokensResponse,
    BarcodeResponse,
    MatchSuggestionModel,
    LabelResultModel,
    ProgressEventModel,
    ReconcileResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "LabelStatus",
    "CropAreaModel",
    "CaptureRulesModel",
    "TokenModel",
    "ManifestEntryModel",
    "ManifestRowError",
    "ManifestResponse",
    "LearnManifestRequest",
    "TokensResponse",
    "BarcodeResponse",
    "MatchSuggestionModel",
    "LabelResultModel",
    "ProgressEventModel",
    "ReconcileResponse",
    "ErrorResponse",
    "HealthResponse",
]
