"""
Utility modules for the slide reconstruction pipeline.
"""

from .io import (
    DocumentSource, PdfDocument, ImageDocument, open_document, load_image, save_json,
    ensure_dir, DocumentLoadFailure, ContainerDecodeFailure, ProcessingStage, ProcessingStatus
)
from .images import encode_image, decode_image, crop_image_regions
from .layout import Box, TextElement, ImageElement, overlap_ratio, deduplicate_images
from .text_layer import TextFragment, RawTextRun, merge_text_runs, extract_text_layer
from .ocr_engines import (
    OCROrchestrator, OCRResult, OCREngine, CircuitBreaker, parse_ocr_response,
    LocalOCRBackend, VertexAIBackend, GeminiAPIBackend,
    OCRBackendError, BackendUnavailable, BackendRateLimited, MalformedResponse,
    ConfigurationMissing, BackendCallFailed
)
from .assembler import DocumentAssembler, PageExtractor, Document, Page, PageResult, ProcessingCancelled

__all__ = [
    # IO
    "DocumentSource", "PdfDocument", "ImageDocument", "open_document", "load_image",
    "save_json", "ensure_dir", "DocumentLoadFailure", "ContainerDecodeFailure",
    "ProcessingStage", "ProcessingStatus",
    # Images
    "encode_image", "decode_image", "crop_image_regions",
    # Layout
    "Box", "TextElement", "ImageElement", "overlap_ratio", "deduplicate_images",
    # Text layer
    "TextFragment", "RawTextRun", "merge_text_runs", "extract_text_layer",
    # OCR
    "OCROrchestrator", "OCRResult", "OCREngine", "CircuitBreaker", "parse_ocr_response",
    "LocalOCRBackend", "VertexAIBackend", "GeminiAPIBackend",
    "OCRBackendError", "BackendUnavailable", "BackendRateLimited", "MalformedResponse",
    "ConfigurationMissing", "BackendCallFailed",
    # Assembly
    "DocumentAssembler", "PageExtractor", "Document", "Page", "PageResult", "ProcessingCancelled",
]
