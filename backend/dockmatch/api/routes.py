"""API route definitions."""

import base64
import importlib.util
import time
from fastapi import APIRouter, Depends, UploadFile, File, Form, HTTPException
from pydantic import TypeAdapter, ValidationError
from typing import Iterator, Optional, List
import logging

from ..models import (
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
    LabelStatus,
    ProgressEventModel,
    ReconcileResponse,
    ErrorResponse,
    HealthResponse,
)
from ..services import (
    Token,
    CropArea,
    OCRMode,
    OCRResource,
    OCRUnavailableError,
    BarcodeDecoder,
    ManifestEntry,
    ManifestParser,
    parse_manifest_text,
    SpatialPatternLearner,
    build_vision_fallback,
    tokens_from_ocr_boxes,
    tokens_from_text_items,
    index_tokens,
    load_image,
    validate_image,
    CaptureRules,
    LabelInput,
    MatchMode,
    ExtractionResult,
    ExtractionServices,
    ReconciliationRunner,
)
from ..config import get_settings
from .. import __version__

logger = logging.getLogger(__name__)
router = APIRouter()

manifest_parser = ManifestParser()

_manifest_adapter = TypeAdapter(list[ManifestEntryModel])
_tokens_adapter = TypeAdapter(dict[str, list[TokenModel]])
_text_items_adapter = TypeAdapter(dict[str, list[dict]])


def get_ocr_resource() -> Iterator[OCRResource]:
    """One OCR session per request, released when the request completes."""
    resource = OCRResource(get_settings())
    try:
        yield resource
    finally:
        resource.release()


def get_barcode_decoder() -> BarcodeDecoder:
    return BarcodeDecoder(get_settings())


def get_vision_fallback():
    return build_vision_fallback(get_settings())


def get_extraction_services(
    ocr: OCRResource = Depends(get_ocr_resource),
    barcode: BarcodeDecoder = Depends(get_barcode_decoder),
    vision=Depends(get_vision_fallback),
) -> ExtractionServices:
    return ExtractionServices(barcode=barcode, ocr=ocr, vision=vision, settings=get_settings())


def _to_token(model: TokenModel) -> Token:
    return Token(text=model.text, x=model.x, y=model.y, width=model.width, height=model.height)


def _to_crop_area(model) -> Optional[CropArea]:
    if model is None:
        return None
    return CropArea(x=model.x, y=model.y, w=model.w, h=model.h)


def _parse_rules(raw: str) -> CaptureRules:
    try:
        model = CaptureRulesModel.model_validate_json(raw or "{}")
        return CaptureRules(
            barcode_area=_to_crop_area(model.barcode_area),
            ocr_area=_to_crop_area(model.ocr_area),
            package_qty_area=_to_crop_area(model.package_qty_area),
            rotation=model.rotation,
        )
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid capture rules: {str(e)}")


def _manifest_entries(models: List[ManifestEntryModel]) -> List[ManifestEntry]:
    entries = [ManifestEntry.create(m.order_number, m.amazon_ref, m.total_packages) for m in models]
    return [e for e in entries if e is not None]


def _entry_model(entry: ManifestEntry) -> ManifestEntryModel:
    return ManifestEntryModel(
        order_number=entry.order_number,
        amazon_ref=entry.amazon_ref,
        total_packages=entry.total_packages,
    )


def _result_model(result: ExtractionResult, include_debug: bool) -> LabelResultModel:
    debug_images = {}
    if include_debug:
        debug_images = {
            name: base64.b64encode(png).decode("utf-8")
            for name, png in result.debug_artifacts.items()
        }
    return LabelResultModel(
        label_id=result.label_id,
        file_name=result.file_name,
        page_number=result.page_number,
        status=LabelStatus(result.state.value),
        candidate_ref=result.candidate_ref,
        source=result.source.value if result.source else None,
        matched_order=result.matched_order,
        matched_ref=result.matched_ref,
        match_rule=result.match_rule.value if result.match_rule else None,
        confidence=result.match_confidence,
        package_info=result.package_info,
        failure_reason=result.failure_reason,
        raw_barcode_text=result.raw_barcode_text,
        raw_text=result.raw_text,
        suggestions=[
            MatchSuggestionModel(order_number=s.order_number, amazon_ref=s.amazon_ref, confidence=s.confidence)
            for s in result.suggestions
        ],
        debug_images=debug_images,
        processing_time_ms=result.processing_time_ms,
    )


async def _read_image(upload: UploadFile):
    try:
        image_bytes = await upload.read()
    except Exception as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read uploaded image")

    filename = upload.filename or "unknown"
    is_valid, error_msg = validate_image(image_bytes, filename)
    if not is_valid:
        raise HTTPException(status_code=400, detail=f"{filename}: {error_msg}")

    try:
        return load_image(image_bytes)
    except (ValueError, OSError) as e:
        raise HTTPException(status_code=422, detail=f"{filename}: {str(e)}")


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check API health and OCR engine availability."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=__version__,
        ocr_ready=importlib.util.find_spec("easyocr") is not None,
        vision_assist=bool(settings.vision_assist_enabled and settings.openai_api_key),
    )


@router.post(
    "/manifest/parse",
    response_model=ManifestResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid manifest"}},
    tags=["Manifest"]
)
async def parse_manifest(
    manifest_file: UploadFile = File(..., description="Dock list export (CSV, TSV or plain text)"),
):
    """
    Parse a dock list export into manifest entries.

    Delimited files are read by header (order / reference / packages columns)
    or positionally. When that yields nothing, the content is scanned as
    free text for order-number / reference pairs.
    """
    settings = get_settings()
    filename = manifest_file.filename or "unknown"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in settings.allowed_manifest_extensions:
        allowed = ", ".join(sorted(settings.allowed_manifest_extensions)).upper()
        raise HTTPException(status_code=400, detail=f"Invalid file type. Allowed formats: {allowed}")

    try:
        content = (await manifest_file.read()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Manifest file must be UTF-8 encoded")

    entries, errors = manifest_parser.parse(content)
    if not entries:
        entries = parse_manifest_text(content)

    if not entries:
        error_messages = [f"Row {e.row_number}: {e.field} - {e.message}" for e in errors[:5]]
        raise HTTPException(
            status_code=400,
            detail=f"No manifest entries found: {'; '.join(error_messages) or 'empty manifest'}"
        )

    logger.info(f"Parsed manifest {filename}: {len(entries)} entries, {len(errors)} row errors")
    return ManifestResponse(
        success=True,
        entries=[_entry_model(e) for e in entries],
        errors=[ManifestRowError(row_number=e.row_number, field=e.field, message=e.message) for e in errors],
    )


@router.post("/manifest/learn", response_model=ManifestResponse, tags=["Manifest"])
async def learn_manifest(request: LearnManifestRequest):
    """
    Learn a manifest's column layout from example tokens and extract every row.

    Pick one order-number token and one reference token from the same line;
    every page is then read with those column positions.
    """
    learner = SpatialPatternLearner(get_settings())
    pages = [[_to_token(t) for t in page] for page in request.pages]
    entries = learner.learn(
        pages,
        _to_token(request.order_example),
        _to_token(request.reference_example),
        _to_token(request.packages_example) if request.packages_example else None,
    )
    return ManifestResponse(
        success=bool(entries),
        entries=[_entry_model(e) for e in entries],
        error=None if entries else "No rows matched the learned layout",
    )


@router.post(
    "/manifest/tokens",
    response_model=TokensResponse,
    responses={503: {"model": ErrorResponse, "description": "OCR engine unavailable"}},
    tags=["Manifest"]
)
async def manifest_tokens(
    image: UploadFile = File(..., description="Scanned manifest page"),
    ocr: OCRResource = Depends(get_ocr_resource),
):
    """
    OCR a scanned manifest page into positioned tokens.

    Feed the tokens (and two picked examples) to /manifest/learn.
    """
    start_time = time.time()
    page = await _read_image(image)

    try:
        boxes = ocr.acquire(OCRMode.FULL_PAGE).read_words(page)
    except OCRUnavailableError as e:
        logger.error(f"OCR unavailable: {e}")
        raise HTTPException(status_code=503, detail="OCR engine not available")

    tokens = tokens_from_ocr_boxes(boxes, page_height=page.shape[0], quantum=get_settings().line_quantum)
    return TokensResponse(
        success=True,
        tokens=[TokenModel(text=t.text, x=t.x, y=t.y, width=t.width, height=t.height) for t in tokens],
        raw_text=" ".join(b.text for b in boxes),
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@router.post(
    "/barcode/decode",
    response_model=BarcodeResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid input"}},
    tags=["Debug"]
)
async def decode_barcode(
    image: UploadFile = File(..., description="Label image file"),
    rules: str = Form("{}", description="Capture rules JSON (barcode_area and rotation are used)"),
    decoder: BarcodeDecoder = Depends(get_barcode_decoder),
):
    """Debug endpoint: decode the barcode zone of one label."""
    capture = _parse_rules(rules)
    page = await _read_image(image)

    result = decoder.decode(page, capture.barcode_area, capture.rotation)
    if result is None:
        return BarcodeResponse(success=False, error="No DataMatrix found in the barcode zone")

    parsed = result.parsed
    return BarcodeResponse(
        success=True,
        raw_text=result.raw_text,
        reference=parsed.ref if parsed else None,
        sequence=parsed.sequence if parsed else None,
        total=parsed.total_from_payload if parsed else None,
        filter_used=result.filter_kind.value,
    )


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        500: {"model": ErrorResponse, "description": "Processing error"}
    },
    tags=["Reconciliation"]
)
async def reconcile(
    labels: List[UploadFile] = File(..., description="Rendered label pages, in processing order"),
    manifest: str = Form(..., description="Manifest entries JSON"),
    rules: str = Form("{}", description="Capture rules JSON"),
    tokens: Optional[str] = Form(None, description="Embedded text tokens JSON, keyed by file name"),
    text_items: Optional[str] = Form(None, description="PDF.js text-content items JSON, keyed by file name"),
    mode: MatchMode = Form(MatchMode.REFERENCE, description="reference or sequential"),
    include_debug: bool = Form(False, description="Return base64 PNG debug snapshots"),
    services: ExtractionServices = Depends(get_extraction_services),
):
    """
    Reconcile label pages against a manifest.

    Labels are processed strictly in upload order. Each label resolves its
    reference from embedded text, then the barcode zone, then glyph OCR of
    the OCR zone, then (if configured) the vision fallback, and is matched
    against the manifest.

    Example manifest:
    ```
    [{"order_number": "87654321", "amazon_ref": "FBA15ABCDEF", "total_packages": 2}]
    ```
    """
    start_time = time.time()
    settings = get_settings()

    if len(labels) > settings.max_labels_per_run:
        raise HTTPException(
            status_code=400,
            detail=f"Too many labels. Maximum per run is {settings.max_labels_per_run}."
        )

    try:
        entries = _manifest_entries(_manifest_adapter.validate_json(manifest))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid manifest: {str(e)}")
    if not entries and mode is MatchMode.SEQUENTIAL:
        raise HTTPException(status_code=400, detail="Sequential mode needs a non-empty manifest")

    capture = _parse_rules(rules)

    embedded = {}
    if tokens:
        try:
            embedded = _tokens_adapter.validate_json(tokens)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid tokens: {str(e)}")

    item_tokens = {}
    if text_items:
        try:
            raw_items = _text_items_adapter.validate_json(text_items)
            item_tokens = {
                name: tokens_from_text_items(items, settings.line_quantum)
                for name, items in raw_items.items()
            }
        except (ValueError, TypeError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid text items: {str(e)}")

    inputs = []
    for idx, upload in enumerate(labels):
        filename = upload.filename or f"label-{idx + 1}"
        page = await _read_image(upload)
        text_tokens = [_to_token(t) for t in embedded.get(filename, [])] + item_tokens.get(filename, [])
        inputs.append(LabelInput(
            label_id=f"label-{idx + 1}",
            image=page,
            text_tokens=tuple(index_tokens(text_tokens, settings.line_quantum)),
            file_name=filename,
        ))

    try:
        run = ReconciliationRunner(services).run(inputs, capture, entries, mode=mode)
    except Exception as e:
        logger.exception(f"Reconciliation error: {e}")
        raise HTTPException(status_code=500, detail=f"Reconciliation failed: {str(e)}")

    return ReconcileResponse(
        success=True,
        mode=mode.value,
        total=len(run.results),
        matched=run.matched_count,
        unmatched=run.unmatched_count,
        pending=run.pending_count,
        aborted=run.aborted,
        abort_reason=run.abort_reason,
        results=[_result_model(r, include_debug) for r in run.results],
        progress=[
            ProgressEventModel(current_index=p.current_index, total_count=p.total_count, status_text=p.status_text)
            for p in run.progress
        ],
        processing_time_ms=int((time.time() - start_time) * 1000),
    )
