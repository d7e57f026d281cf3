"""Pydantic schemas for API requests and responses."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


class LabelStatus(str, Enum):
    """State of a label in a reconciliation run."""
    PENDING = "pending"
    RESOLVING = "resolving"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


class CropAreaModel(BaseModel):
    """Zone as fractions of the rotated page."""
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)
    w: float = Field(..., gt=0.0, le=1.0)
    h: float = Field(..., gt=0.0, le=1.0)


class CaptureRulesModel(BaseModel):
    """Zones and rotation shared by every label of a run."""
    barcode_area: Optional[CropAreaModel] = None
    ocr_area: Optional[CropAreaModel] = None
    package_qty_area: Optional[CropAreaModel] = None
    rotation: int = Field(0, description="Clockwise rotation: 0, 90, 180 or 270")

    class Config:
        json_schema_extra = {
            "example": {
                "barcode_area": {"x": 0.55, "y": 0.05, "w": 0.4, "h": 0.3},
                "ocr_area": {"x": 0.05, "y": 0.8, "w": 0.6, "h": 0.08},
                "package_qty_area": None,
                "rotation": 0
            }
        }


class TokenModel(BaseModel):
    """Positioned text fragment (y grows upward, page units)."""
    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0


class ManifestEntryModel(BaseModel):
    """One dock list row."""
    order_number: str = Field(..., min_length=1)
    amazon_ref: str = Field(..., min_length=1)
    total_packages: int = Field(0, ge=0, description="0 when the manifest does not say")

    class Config:
        json_schema_extra = {
            "example": {
                "order_number": "87654321",
                "amazon_ref": "FBA15ABCDEF",
                "total_packages": 2
            }
        }


class ManifestRowError(BaseModel):
    """Row-level problem found while parsing a manifest."""
    row_number: int
    field: str
    message: str


class ManifestResponse(BaseModel):
    """Parsed or learned manifest."""
    success: bool
    entries: list[ManifestEntryModel]
    errors: list[ManifestRowError] = []
    error: Optional[str] = None


class LearnManifestRequest(BaseModel):
    """Pages of tokens plus the operator's example tokens."""
    pages: list[list[TokenModel]]
    order_example: TokenModel
    reference_example: TokenModel
    packages_example: Optional[TokenModel] = None


class TokensResponse(BaseModel):
    """Tokens recovered from a scanned manifest page."""
    success: bool
    tokens: list[TokenModel]
    raw_text: str
    processing_time_ms: int


class BarcodeResponse(BaseModel):
    """Result of decoding one barcode zone."""
    success: bool
    raw_text: Optional[str] = None
    reference: Optional[str] = None
    sequence: Optional[int] = None
    total: Optional[int] = None
    filter_used: Optional[str] = None
    error: Optional[str] = None


class MatchSuggestionModel(BaseModel):
    """Closest manifest rows for an unmatched label."""
    order_number: str
    amazon_ref: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class LabelResultModel(BaseModel):
    """Outcome for one label."""
    label_id: str
    file_name: str
    page_number: int = 1
    status: LabelStatus
    candidate_ref: Optional[str] = None
    source: Optional[str] = None
    matched_order: Optional[str] = None
    matched_ref: Optional[str] = None
    match_rule: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    package_info: Optional[str] = None
    failure_reason: Optional[str] = None
    raw_barcode_text: Optional[str] = None
    raw_text: Optional[str] = None
    suggestions: list[MatchSuggestionModel] = []
    debug_images: dict[str, str] = Field(default_factory=dict, description="Base64 PNG snapshots")
    processing_time_ms: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "label_id": "label-1",
                "file_name": "label1.png",
                "page_number": 1,
                "status": "matched",
                "candidate_ref": "ABCDEFGHI",
                "source": "barcode",
                "matched_order": "87654321",
                "matched_ref": "ABCDEFGHI",
                "match_rule": "exact",
                "confidence": 1.0,
                "package_info": "1/2",
                "failure_reason": None,
                "suggestions": [],
                "debug_images": {},
                "processing_time_ms": 420
            }
        }


class ProgressEventModel(BaseModel):
    """Progress emitted as each label starts."""
    current_index: int
    total_count: int
    status_text: str


class ReconcileResponse(BaseModel):
    """Response for a reconciliation run."""
    success: bool
    mode: str
    total: int
    matched: int
    unmatched: int
    pending: int
    aborted: bool = False
    abort_reason: Optional[str] = None
    results: list[LabelResultModel]
    progress: list[ProgressEventModel]
    processing_time_ms: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Invalid capture rules",
                "detail": "rotation must be one of (0, 90, 180, 270), got 45"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    ocr_ready: bool
    vision_assist: bool = False
