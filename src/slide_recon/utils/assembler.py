"""
Document assembler module for slide reconstruction.

Provides:
- Document data model (Document, Page)
- Per-page extraction (native images, OCR, text-layer fallback)
- Pipeline orchestration with progress reporting and cancellation
- User-visible warning aggregation
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Dict, Any, Sequence, Tuple, Union

from ..config import JSON_SCHEMA_VERSION, OUTPUT_FORMATS, PipelineConfig, get_config
from .images import crop_image_regions, encode_image
from .io import (
    DocumentLoadFailure, DocumentSource, ProcessingStage, ProcessingStatus,
    open_document
)
from .layout import ImageElement, TextElement, deduplicate_images
from .ocr_engines import BackendRateLimited, CircuitBreaker, OCRBackendError, OCROrchestrator
from .text_layer import extract_text_layer

logger = logging.getLogger(__name__)


# ============================================================================
# Warnings and Markers
# ============================================================================

NO_TEXT_LAYER_WARNING = "OCR failed and no text layer is available"
RATE_LIMIT_WARNING = "OCR failed: API rate limit exceeded"
EXTRACTION_FAILED_WARNING = "Text/image extraction failed"
PAGE_IMAGE_WARNING = "The exported file will include the page image."

TEXT_LAYER_ENGINE = "text-layer"


class ProcessingCancelled(Exception):
    """Processing was aborted by the user."""


class PageStage(str, Enum):
    """Steps of one page's extraction, in the order they run."""
    RENDERING = "rendering"
    EXTRACTING_IMAGES = "extracting-images"
    OCR_PROCESSING = "ocr-processing"
    FALLBACK_TEXT_LAYER = "fallback-text-layer"
    DONE = "done"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageResult:
    """Final element set of one page."""
    text_elements: List[TextElement] = field(default_factory=list)
    image_elements: List[ImageElement] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text_elements and not self.image_elements


@dataclass
class PageExtraction:
    """Everything the page extractor learned about one page."""
    result: PageResult
    width: int
    height: int
    engine: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    ocr_error: Optional[OCRBackendError] = None


@dataclass
class Page:
    """A reconstructed page."""
    page_number: int
    width: int
    height: int
    text_elements: List[TextElement] = field(default_factory=list)
    image_elements: List[ImageElement] = field(default_factory=list)
    engine: Optional[str] = None  # OCR engine tag, "text-layer", or None
    warnings: List[str] = field(default_factory=list)
    page_id: str = ""

    def __post_init__(self):
        if not self.page_id:
            self.page_id = str(uuid.uuid4())

    @property
    def is_empty(self) -> bool:
        return not self.text_elements and not self.image_elements

    def to_dict(self, include_data: bool = True) -> Dict[str, Any]:
        return {
            "id": self.page_id,
            "pageNumber": self.page_number,
            "width": self.width,
            "height": self.height,
            "engine": self.engine,
            "textElements": [t.to_dict() for t in self.text_elements],
            "imageElements": [i.to_dict(include_data=include_data) for i in self.image_elements],
            "warnings": self.warnings
        }


@dataclass
class Document:
    """Complete reconstructed document."""
    file_name: str
    output_format: str = "pptx"
    input_file_type: str = "pdf"
    pages: List[Page] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    active_language: str = "original"

    # Metadata
    document_id: str = ""
    created_at: str = ""
    schema_version: str = JSON_SCHEMA_VERSION

    def __post_init__(self):
        if not self.document_id:
            self.document_id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    def add_warning(self, message: str):
        if message not in self.warnings:
            self.warnings.append(message)

    def to_dict(self, include_data: bool = True) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "schemaVersion": self.schema_version,
            "fileName": self.file_name,
            "inputFileType": self.input_file_type,
            "outputFormat": self.output_format,
            "activeLanguage": self.active_language,
            "createdAt": self.created_at,
            "warnings": self.warnings,
            "pages": [p.to_dict(include_data=include_data) for p in self.pages]
        }


# ============================================================================
# Page Extraction
# ============================================================================

class PageExtractor:
    """
    Extracts the element set of one page.

    Stages always run in order: rendering, native image extraction, OCR,
    and the text-layer fallback when OCR produced nothing usable. A stage
    is never retried.
    """

    def __init__(self, orchestrator: OCROrchestrator, jpeg_quality: int = 90):
        self.orchestrator = orchestrator
        self.jpeg_quality = jpeg_quality

    def extract(
        self,
        source: DocumentSource,
        index: int,
        breaker: CircuitBreaker,
        on_stage: Optional[Callable[[PageStage], None]] = None
    ) -> PageExtraction:
        """
        Extract one page.

        Args:
            source: Open document
            index: 0-based page index
            breaker: Circuit breaker of the current document
            on_stage: Called as each stage starts

        Returns:
            PageExtraction for the page

        Raises:
            Exception: Whatever rendering raised; later stages are contained
        """
        notify = on_stage or (lambda stage: None)
        page_number = index + 1
        warnings: List[str] = []

        notify(PageStage.RENDERING)
        raster = source.render_page(index)
        height, width = raster.shape[:2]

        notify(PageStage.EXTRACTING_IMAGES)
        try:
            native_images = source.extract_images(index)
        except Exception as e:
            logger.warning(f"Page {page_number}: native image extraction failed: {e}")
            native_images = []

        notify(PageStage.OCR_PROCESSING)
        result = PageResult(image_elements=list(native_images))
        engine = None
        ocr_error = None

        try:
            ocr = self.orchestrator.extract(
                encode_image(raster, ".jpg", self.jpeg_quality), breaker
            )
        except OCRBackendError as e:
            ocr_error = e
            logger.warning(f"Page {page_number}: OCR failed ({e.backend}): {e}")
        else:
            result.text_elements = list(ocr.text_elements)
            engine = ocr.engine
            if ocr.image_regions:
                result.image_elements.extend(self._crop_regions(raster, ocr.image_regions, native_images, page_number))

        if ocr_error is not None:
            notify(PageStage.FALLBACK_TEXT_LAYER)
            result.text_elements, engine = self._text_layer_fallback(source, index, warnings)

        notify(PageStage.DONE)
        logger.info(
            f"Page {page_number}: {len(result.text_elements)} texts, "
            f"{len(result.image_elements)} images (engine: {engine})"
        )
        return PageExtraction(
            result=result,
            width=width,
            height=height,
            engine=engine,
            warnings=warnings,
            ocr_error=ocr_error
        )

    def _crop_regions(self, raster, regions, native_images, page_number) -> List[ImageElement]:
        try:
            crops = crop_image_regions(raster, regions)
        except Exception as e:
            logger.warning(f"Page {page_number}: cropping OCR image regions failed: {e}")
            return []

        survivors = deduplicate_images(native_images, crops)
        if len(survivors) < len(crops):
            logger.info(
                f"Page {page_number}: dropped {len(crops) - len(survivors)} "
                f"OCR image regions duplicating native images"
            )
        return survivors

    def _text_layer_fallback(
        self,
        source: DocumentSource,
        index: int,
        warnings: List[str]
    ) -> Tuple[List[TextElement], Optional[str]]:
        page_number = index + 1
        try:
            if not source.has_text_layer(index):
                warnings.append(NO_TEXT_LAYER_WARNING)
                return [], None
            fragments, page_width, page_height = source.text_fragments(index)
            elements = extract_text_layer(fragments, page_width, page_height)
        except Exception as e:
            logger.error(f"Page {page_number}: text layer fallback failed: {e}")
            return [], None

        logger.info(f"Page {page_number}: using text layer ({len(elements)} blocks)")
        return elements, TEXT_LAYER_ENGINE


# ============================================================================
# Document Assembler
# ============================================================================

_STAGE_PROGRESS = {
    PageStage.RENDERING: ProcessingStage.RENDERING_PAGES,
    PageStage.EXTRACTING_IMAGES: ProcessingStage.EXTRACTING_IMAGES,
    PageStage.OCR_PROCESSING: ProcessingStage.OCR_PROCESSING,
}


class DocumentAssembler:
    """
    Orchestrates the slide reconstruction pipeline.

    Pages are processed sequentially in page order. Circuit breaker and
    progress status live for one document only and are reset whenever a
    new document starts.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        orchestrator: Optional[OCROrchestrator] = None,
        progress_callback: Optional[Callable[[ProcessingStatus], None]] = None
    ):
        self.config = config or get_config()
        self.orchestrator = orchestrator or OCROrchestrator.from_config(self.config.ocr)
        self.page_extractor = PageExtractor(
            self.orchestrator,
            jpeg_quality=self.config.render.jpeg_quality
        )
        self.progress_callback = progress_callback
        self.status = ProcessingStatus()

        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def cancel(self):
        """Stop scheduling further pages of the current document."""
        logger.info("Cancellation requested")
        self._cancelled.set()

    def process_file(
        self,
        input_path: Union[str, Path],
        output_format: Optional[str] = None,
        pages: Optional[Sequence[int]] = None
    ) -> Document:
        """
        Open and process a document file.

        Args:
            input_path: PDF, image, or folder of images
            output_format: "pptx" or "docx" (defaults to the configured one)
            pages: 1-based page numbers to process (all when None)

        Returns:
            Assembled Document

        Raises:
            DocumentLoadFailure: If the input cannot be opened
            ProcessingCancelled: If cancel() was called
        """
        input_path = Path(input_path)
        self._begin()

        try:
            source = open_document(input_path, dpi=self.config.render.dpi)
        except DocumentLoadFailure as e:
            logger.error(f"Could not load {input_path}: {e}")
            self._reset_status()
            raise

        with source:
            return self._run(source, input_path.name, output_format, pages)

    def process_document(
        self,
        source: DocumentSource,
        file_name: str,
        output_format: Optional[str] = None,
        pages: Optional[Sequence[int]] = None
    ) -> Document:
        """Process an already opened document source."""
        self._begin()
        return self._run(source, file_name, output_format, pages)

    def _run(
        self,
        source: DocumentSource,
        file_name: str,
        output_format: Optional[str],
        pages: Optional[Sequence[int]]
    ) -> Document:
        output_format = output_format or self.config.output_format
        if output_format not in OUTPUT_FORMATS:
            self._reset_status()
            raise ValueError(f"Unsupported output format: {output_format}")

        breaker = CircuitBreaker()
        indices = self._select_pages(source.page_count, pages)
        total = len(indices)

        with self._lock:
            self.status = ProcessingStatus(stage=ProcessingStage.RENDERING_PAGES, total=total)

        document = Document(
            file_name=file_name,
            output_format=output_format,
            input_file_type=source.file_type
        )
        ocr_failure_reported = False

        for warning in source.load_warnings:
            self._add_warning(document, warning)

        logger.info(f"Processing {file_name}: {total} pages")

        for position, index in enumerate(indices, 1):
            if self._cancelled.is_set():
                logger.info(f"Processing cancelled after {position - 1} of {total} pages")
                self._reset_status()
                raise ProcessingCancelled(f"Cancelled after {position - 1} of {total} pages")

            page, ocr_error = self._process_page(source, index, position, breaker)
            document.pages.append(page)

            if ocr_error is not None and not ocr_failure_reported:
                ocr_failure_reported = True
                if isinstance(ocr_error, BackendRateLimited):
                    self._add_warning(document, RATE_LIMIT_WARNING)
                else:
                    self._add_warning(document, f"OCR failed: {ocr_error}")

            for warning in page.warnings:
                self._add_warning(document, warning)

            if position == 1 and page.is_empty:
                self._add_warning(document, EXTRACTION_FAILED_WARNING)
                self._add_warning(document, PAGE_IMAGE_WARNING)

        self._update_status(ProcessingStage.COMPLETE, current=total)
        logger.info(f"Finished {file_name}: {len(document.pages)} pages, {len(document.warnings)} warnings")
        return document

    def _process_page(
        self,
        source: DocumentSource,
        index: int,
        position: int,
        breaker: CircuitBreaker
    ) -> Tuple[Page, Optional[OCRBackendError]]:
        def on_stage(stage: PageStage):
            if stage in _STAGE_PROGRESS:
                self._update_status(_STAGE_PROGRESS[stage], current=position)

        try:
            extraction = self.page_extractor.extract(source, index, breaker, on_stage)
        except Exception as e:
            logger.error(f"Page {index + 1} failed: {e}")
            return Page(
                page_number=index + 1,
                width=0,
                height=0,
                warnings=[f"Page {index + 1} could not be processed: {e}"]
            ), None

        return Page(
            page_number=index + 1,
            width=extraction.width,
            height=extraction.height,
            text_elements=extraction.result.text_elements,
            image_elements=extraction.result.image_elements,
            engine=extraction.engine,
            warnings=extraction.warnings
        ), extraction.ocr_error

    def _select_pages(self, page_count: int, pages: Optional[Sequence[int]]) -> List[int]:
        if pages is None:
            return list(range(page_count))

        indices = []
        for number in pages:
            if 1 <= number <= page_count:
                indices.append(number - 1)
            else:
                logger.warning(f"Skipping page {number}: document has {page_count} pages")
        return sorted(set(indices))

    def _add_warning(self, document: Document, message: str):
        document.add_warning(message)
        with self._lock:
            if message not in self.status.warnings:
                self.status.warnings.append(message)

    def _begin(self):
        self._cancelled.clear()
        with self._lock:
            self.status = ProcessingStatus()
        self._update_status(ProcessingStage.LOADING)

    def _update_status(
        self,
        stage: ProcessingStage,
        current: Optional[int] = None
    ):
        with self._lock:
            self.status.stage = stage
            if current is not None:
                self.status.current = current
            snapshot = replace(self.status, warnings=list(self.status.warnings))

        if self.progress_callback:
            self.progress_callback(snapshot)

    def _reset_status(self):
        with self._lock:
            self.status = ProcessingStatus()
        if self.progress_callback:
            self.progress_callback(replace(self.status, warnings=[]))
