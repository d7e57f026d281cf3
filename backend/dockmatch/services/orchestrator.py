"""Per-label reference extraction and the sequential reconciliation run.

resolve_label() takes one label from pending to matched/unmatched by trying,
in order, until one yields a usable reference:
1. Reference already present in the page's embedded text
2. DataMatrix over the barcode zone
3. OCR zone: glyph segmentation + per-glyph OCR (whole-strip OCR if empty)
4. Vision fallback on the OCR zone crop

ReconciliationRunner folds resolve_label() over the labels strictly in
order (package numbering depends on it), emitting one progress event per
label, then numbers packages per order in a final pass.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np

from .barcode import BarcodeDecoder
from .imaging import CropArea, FilterKind, VALID_ROTATIONS, encode_png, transform_region
from .manifest import ManifestEntry
from .matcher import FuzzyMatcher, MatchRule, MatchSuggestion
from .normalizer import clean_reference, extract_reference_from_text, parse_package_info
from .ocr import OCRMode, OCRResource, QUANTITY_ALLOWLIST
from .segmentation import segment_glyphs
from .tokens import Token, joined_text
from .vision import VisionAuthorizationError, VisionFallback
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

REASON_NO_REFERENCE = "no reference detected"
REASON_NO_MATCH = "no manifest match"
REASON_EXHAUSTED = "manifest exhausted"
REASON_VISION_AUTH = "vision authorization failed"
REASON_CANCELLED = "cancelled"


class LabelState(str, Enum):
    """Lifecycle of one label within a run."""
    PENDING = "pending"
    RESOLVING = "resolving"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


class ReferenceSource(str, Enum):
    """Stage that produced the candidate reference."""
    EMBEDDED_TEXT = "embedded_text"
    BARCODE = "barcode"
    OCR_ZONE = "ocr_zone"
    VISION = "vision"
    MANIFEST_ORDER = "manifest_order"


class MatchMode(str, Enum):
    """How labels are paired with manifest rows."""
    REFERENCE = "reference"    # match extracted references
    SEQUENTIAL = "sequential"  # label i takes manifest row i


@dataclass(frozen=True)
class CaptureRules:
    """Operator-configured zones, applied to every label of a run."""
    barcode_area: Optional[CropArea] = None
    ocr_area: Optional[CropArea] = None
    package_qty_area: Optional[CropArea] = None
    rotation: int = 0

    def __post_init__(self):
        if self.rotation not in VALID_ROTATIONS:
            raise ValueError(f"rotation must be one of {VALID_ROTATIONS}, got {self.rotation}")


@dataclass(frozen=True, eq=False)
class LabelInput:
    """One rendered label page."""
    label_id: str
    image: np.ndarray
    text_tokens: Tuple[Token, ...] = ()
    file_name: str = ""
    page_number: int = 1


@dataclass(frozen=True)
class ExtractionResult:
    """Terminal (or pending, if the run stopped early) state of one label."""
    label_id: str
    state: LabelState
    file_name: str = ""
    page_number: int = 1
    candidate_ref: Optional[str] = None
    source: Optional[ReferenceSource] = None
    sequence: Optional[int] = None  # reported by the barcode payload
    total: Optional[int] = None     # reported by the barcode payload
    package_qty: Optional[Tuple[int, int]] = None  # read from the package-quantity zone
    matched_order: Optional[str] = None
    matched_ref: Optional[str] = None
    manifest_total_packages: int = 0
    match_rule: Optional[MatchRule] = None
    match_confidence: Optional[float] = None
    package_info: Optional[str] = None
    failure_reason: Optional[str] = None
    raw_barcode_text: Optional[str] = None
    raw_text: Optional[str] = None
    suggestions: Tuple[MatchSuggestion, ...] = ()
    debug_artifacts: Mapping[str, bytes] = field(default_factory=dict)
    aborts_run: bool = False
    processing_time_ms: int = 0


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted once per label as it begins resolution."""
    current_index: int
    total_count: int
    status_text: str


@dataclass
class RunResult:
    """Everything a reconciliation run produced."""
    results: List[ExtractionResult]
    progress: List[ProgressEvent] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def matched_count(self) -> int:
        return sum(1 for r in self.results if r.state is LabelState.MATCHED)

    @property
    def unmatched_count(self) -> int:
        return sum(1 for r in self.results if r.state is LabelState.UNMATCHED)

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self.results if r.state is LabelState.PENDING)


@dataclass
class ExtractionServices:
    """Collaborators handed explicitly to every stage that needs them."""
    barcode: BarcodeDecoder
    ocr: Optional[OCRResource] = None
    vision: Optional[VisionFallback] = None
    settings: Settings = field(default_factory=get_settings)


def read_ocr_zone(strip: np.ndarray, ocr: OCRResource) -> Tuple[str, np.ndarray]:
    """
    OCR an upscaled zone one glyph at a time.

    Returns:
        Tuple of (text, snapshot) where snapshot is the image actually read.
    """
    segmentation = segment_glyphs(strip)
    if not segmentation.is_empty:
        worker = ocr.acquire(OCRMode.SINGLE_CHAR)
        text = "".join(worker.read_text(img) for img in segmentation.glyph_images)
        if text:
            logger.debug(f"Glyph OCR read '{text}' from {len(segmentation.glyphs)} glyphs")
            return text, segmentation.strip

    # Nothing segmented (or every glyph came back blank): read the strip whole
    worker = ocr.acquire(OCRMode.STRIP)
    return worker.read_text(strip), strip


def _usable(raw: Optional[str], settings: Settings) -> Optional[str]:
    return clean_reference(raw, settings.min_reference_length)


def _resolve_sequential(label: LabelInput, matcher: FuzzyMatcher, position: int) -> ExtractionResult:
    base = ExtractionResult(
        label_id=label.label_id,
        state=LabelState.UNMATCHED,
        file_name=label.file_name,
        page_number=label.page_number,
    )
    if position >= len(matcher):
        return replace(base, failure_reason=REASON_EXHAUSTED)

    entry = matcher.entries[position]
    return replace(
        base,
        state=LabelState.MATCHED,
        candidate_ref=entry.amazon_ref,
        source=ReferenceSource.MANIFEST_ORDER,
        matched_order=entry.order_number,
        matched_ref=entry.amazon_ref,
        manifest_total_packages=entry.total_packages,
    )


def resolve_label(
    label: LabelInput,
    rules: CaptureRules,
    matcher: FuzzyMatcher,
    services: ExtractionServices,
    mode: MatchMode = MatchMode.REFERENCE,
    position: int = 0,
) -> ExtractionResult:
    """
    Resolve one label to matched/unmatched.

    Each stage only runs when the previous ones produced no usable reference.
    Stage-local failures (no decode, blank OCR) just move on to the next
    stage. A vision authorization failure ends this label as unmatched and
    sets ``aborts_run``.
    """
    if mode is MatchMode.SEQUENTIAL:
        return _resolve_sequential(label, matcher, position)

    settings = services.settings
    debug: Dict[str, bytes] = {}
    ref: Optional[str] = None
    source: Optional[ReferenceSource] = None
    sequence: Optional[int] = None
    total: Optional[int] = None
    raw_barcode_text: Optional[str] = None
    package_qty: Optional[Tuple[int, int]] = None

    # 1. Embedded text
    raw_text = joined_text(label.text_tokens) or None
    if raw_text:
        ref = _usable(extract_reference_from_text(raw_text), settings)
        if ref:
            source = ReferenceSource.EMBEDDED_TEXT

    # 2. Barcode zone
    if ref is None:
        barcode = services.barcode.decode(label.image, rules.barcode_area, rules.rotation)
        if barcode is not None:
            raw_barcode_text = barcode.raw_text
            if barcode.image is not None:
                debug["barcode"] = encode_png(barcode.image)
            if barcode.parsed is not None:
                ref = _usable(barcode.parsed.ref, settings)
                if ref:
                    source = ReferenceSource.BARCODE
                    sequence = barcode.parsed.sequence
                    total = barcode.parsed.total_from_payload

    # 3. OCR zone, one glyph at a time
    ocr_crop = None
    if ref is None and rules.ocr_area is not None:
        ocr_crop = transform_region(label.image, rules.ocr_area, rules.rotation, FilterKind.RAW, settings.upscale_factor)
        if services.ocr is not None:
            text, snapshot = read_ocr_zone(ocr_crop, services.ocr)
            debug["ocr"] = encode_png(snapshot)
            if text:
                raw_text = text if raw_text is None else f"{raw_text} {text}"
            ref = _usable(extract_reference_from_text(text) or text, settings)
            if ref:
                source = ReferenceSource.OCR_ZONE

    # 4. Vision fallback
    if ref is None and services.vision is not None:
        if ocr_crop is None:
            ocr_crop = transform_region(label.image, rules.ocr_area, rules.rotation, FilterKind.RAW, settings.upscale_factor)
        try:
            vision_ref = services.vision.extract_reference(encode_png(ocr_crop))
        except VisionAuthorizationError as e:
            logger.error(f"Label {label.label_id}: {e}")
            return ExtractionResult(
                label_id=label.label_id,
                state=LabelState.UNMATCHED,
                file_name=label.file_name,
                page_number=label.page_number,
                failure_reason=REASON_VISION_AUTH,
                raw_barcode_text=raw_barcode_text,
                raw_text=raw_text,
                debug_artifacts=debug,
                aborts_run=True,
            )
        ref = _usable(vision_ref, settings)
        if ref:
            source = ReferenceSource.VISION

    base = ExtractionResult(
        label_id=label.label_id,
        state=LabelState.UNMATCHED,
        file_name=label.file_name,
        page_number=label.page_number,
        candidate_ref=ref,
        source=source,
        sequence=sequence,
        total=total,
        raw_barcode_text=raw_barcode_text,
        raw_text=raw_text,
        debug_artifacts=debug,
    )

    if ref is None:
        return replace(base, failure_reason=REASON_NO_REFERENCE)

    outcome = matcher.find(ref)
    if outcome is None:
        return replace(
            base,
            failure_reason=f"{REASON_NO_MATCH} for '{ref}'",
            suggestions=tuple(matcher.suggest(ref)),
        )

    # Package-quantity zone ("2 de 3"), only worth reading for matched labels
    if rules.package_qty_area is not None and services.ocr is not None:
        qty_crop = transform_region(
            label.image, rules.package_qty_area, rules.rotation, FilterKind.GRAYSCALE, settings.upscale_factor
        )
        debug["package_qty"] = encode_png(qty_crop)
        qty_text = services.ocr.acquire(OCRMode.STRIP).read_text(qty_crop, allowlist=QUANTITY_ALLOWLIST)
        package_qty = parse_package_info(qty_text)

    return replace(
        base,
        state=LabelState.MATCHED,
        package_qty=package_qty,
        matched_order=outcome.entry.order_number,
        matched_ref=outcome.entry.amazon_ref,
        manifest_total_packages=outcome.entry.total_packages,
        match_rule=outcome.rule,
        match_confidence=outcome.confidence,
    )


def assign_package_info(results: Sequence[ExtractionResult], fmt: str = "{sequence}/{total}") -> List[ExtractionResult]:
    """
    Number the packages of each matched order.

    A label whose quantity zone was read keeps that reading. Otherwise labels
    sharing an order are numbered 1..n by barcode-reported sequence, then by
    first-seen order; the total comes from the barcode, then the manifest,
    then the number of labels seen.
    """
    groups: Dict[str, List[Tuple[int, ExtractionResult]]] = defaultdict(list)
    for idx, result in enumerate(results):
        if result.state is LabelState.MATCHED and result.matched_order:
            groups[result.matched_order].append((idx, result))

    updated = list(results)
    for order, members in groups.items():
        ordered = sorted(members, key=lambda m: (m[1].sequence is None, m[1].sequence or 0, m[0]))
        count = len(ordered)
        for position, (idx, result) in enumerate(ordered, start=1):
            if result.package_qty:
                sequence, total = result.package_qty
            else:
                sequence = position
                total = result.total or result.manifest_total_packages or count
            updated[idx] = replace(result, package_info=fmt.format(sequence=sequence, total=total))
    return updated


class ReconciliationRunner:
    """
    Resolve labels one after another against a manifest.

    Strictly sequential: every stage of a label (including awaited OCR or
    vision calls) finishes before the next label starts.
    """

    def __init__(self, services: ExtractionServices):
        self.services = services
        self.settings = services.settings

    def run(
        self,
        labels: Sequence[LabelInput],
        rules: CaptureRules,
        entries: Sequence[ManifestEntry],
        mode: MatchMode = MatchMode.REFERENCE,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RunResult:
        """
        Process a run of labels.

        Args:
            labels: Labels in processing order
            rules: Capture zones and rotation for every label
            entries: Manifest, read-only for the whole run
            mode: Reference matching or sequential assignment
            on_progress: Called with each ProgressEvent as a label begins
            cancel_event: When set, the run stops before the next label

        Returns:
            RunResult; labels never started are reported as pending.
        """
        matcher = FuzzyMatcher(entries)
        results: List[ExtractionResult] = []
        progress: List[ProgressEvent] = []
        aborted = False
        abort_reason = None
        total = len(labels)

        try:
            for idx, label in enumerate(labels):
                if cancel_event is not None and cancel_event.is_set():
                    aborted, abort_reason = True, REASON_CANCELLED
                    logger.info(f"Run cancelled before label {idx + 1} of {total}")
                    break

                event = ProgressEvent(
                    current_index=idx + 1,
                    total_count=total,
                    status_text=f"Analyzing label {idx + 1} of {total}...",
                )
                progress.append(event)
                if on_progress is not None:
                    on_progress(event)

                start_time = time.time()
                try:
                    result = resolve_label(label, rules, matcher, self.services, mode=mode, position=idx)
                except Exception as e:
                    logger.exception(f"Error processing label {label.label_id}: {e}")
                    result = ExtractionResult(
                        label_id=label.label_id,
                        state=LabelState.UNMATCHED,
                        file_name=label.file_name,
                        page_number=label.page_number,
                        failure_reason=f"processing error: {str(e)}",
                    )
                result = replace(result, processing_time_ms=int((time.time() - start_time) * 1000))
                results.append(result)

                if result.aborts_run:
                    aborted, abort_reason = True, REASON_VISION_AUTH
                    logger.error("Vision fallback rejected credentials; stopping the run")
                    break
        finally:
            if self.services.ocr is not None:
                self.services.ocr.release()

        for label in labels[len(results):]:
            results.append(ExtractionResult(
                label_id=label.label_id,
                state=LabelState.PENDING,
                file_name=label.file_name,
                page_number=label.page_number,
            ))

        results = assign_package_info(results, self.settings.package_info_format)
        run = RunResult(results=results, progress=progress, aborted=aborted, abort_reason=abort_reason)
        logger.info(
            f"Run finished: {run.matched_count} matched, {run.unmatched_count} unmatched, "
            f"{run.pending_count} pending of {total} (mode={mode.value})"
        )
        return run
