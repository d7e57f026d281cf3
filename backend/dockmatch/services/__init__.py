"""Services for label imaging, barcode/OCR extraction, manifest parsing and reconciliation."""

from .tokens import Token, group_into_lines, index_tokens, same_line, tokens_from_text_items, tokens_from_ocr_boxes
from .imaging import CropArea, FilterKind, transform_region, load_image, encode_png, validate_image
from .segmentation import Glyph, SegmentationResult, segment_glyphs
from .ocr import OCRMode, OCRResource, OCRWorker, OCRBox, OCRUnavailableError
from .normalizer import normalize_reference, clean_reference, extract_reference_from_text, parse_package_info
from .barcode import BarcodeDecoder, BarcodeResult, ParsedPayload, parse_payload
from .manifest import ManifestEntry, ManifestError, ManifestParser, parse_manifest_text
from .matcher import FuzzyMatcher, MatchOutcome, MatchRule, MatchSuggestion
from .learner import SpatialPatternLearner
from .vision import VisionAuthorizationError, OpenAIVisionClient, build_vision_fallback
from .orchestrator import (
    CaptureRules,
    LabelInput,
    LabelState,
    ReferenceSource,
    MatchMode,
    ExtractionResult,
    ProgressEvent,
    RunResult,
    ExtractionServices,
    ReconciliationRunner,
    resolve_label,
    assign_package_info,
)

__all__ = [
    "Token",
    "group_into_lines",
    "index_tokens",
    "same_line",
    "tokens_from_text_items",
    "tokens_from_ocr_boxes",
    "CropArea",
    "FilterKind",
    "transform_region",
    "load_image",
    "encode_png",
    "validate_image",
    "Glyph",
    "SegmentationResult",
    "segment_glyphs",
    "OCRMode",
    "OCRResource",
    "OCRWorker",
    "OCRBox",
    "OCRUnavailableError",
    "normalize_reference",
    "clean_reference",
    "extract_reference_from_text",
    "parse_package_info",
    "BarcodeDecoder",
    "BarcodeResult",
    "ParsedPayload",
    "parse_payload",
    "ManifestEntry",
    "ManifestError",
    "ManifestParser",
    "parse_manifest_text",
    "FuzzyMatcher",
    "MatchOutcome",
    "MatchRule",
    "MatchSuggestion",
    "SpatialPatternLearner",
    "VisionAuthorizationError",
    "OpenAIVisionClient",
    "build_vision_fallback",
    "CaptureRules",
    "LabelInput",
    "LabelState",
    "ReferenceSource",
    "MatchMode",
    "ExtractionResult",
    "ProgressEvent",
    "RunResult",
    "ExtractionServices",
    "ReconciliationRunner",
    "resolve_label",
    "assign_package_info",
]
