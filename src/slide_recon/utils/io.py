"""
I/O utilities for the slide reconstruction pipeline.

Handles:
- Opening PDF files and page images as document sources
- Page rendering, native image extraction and text-layer access
- JSON serialization
- Processing progress records
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from typing import List, Union, Any, Tuple

import numpy as np

from .images import to_bgr
from .layout import Box, ImageElement
from .text_layer import TextFragment

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp')

_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "jpx": "image/jp2",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "bmp": "image/bmp",
    "gif": "image/gif",
}


# ============================================================================
# Container Errors
# ============================================================================

class DocumentLoadFailure(RuntimeError):
    """The input cannot be opened as a document at all."""


class ContainerDecodeFailure(RuntimeError):
    """Native-layer extraction (images, text) failed for one page."""


# ============================================================================
# Progress Tracking
# ============================================================================

class ProcessingStage(str, Enum):
    """Document-level progress marker."""
    IDLE = "idle"
    LOADING = "loading"
    RENDERING_PAGES = "rendering-pages"
    EXTRACTING_IMAGES = "extracting-images"
    OCR_PROCESSING = "ocr-processing"
    COMPLETE = "complete"


@dataclass
class ProcessingStatus:
    """Snapshot of processing progress handed to observers."""
    stage: ProcessingStage = ProcessingStage.IDLE
    current: int = 0
    total: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.current / self.total) * 100


# ============================================================================
# Document Sources
# ============================================================================

class DocumentSource(ABC):
    """
    A decoded document exposing pages, native images and a text layer.

    Pages are addressed by 0-based index.
    """

    file_type: str = "unknown"
    load_warnings: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def page_count(self) -> int:
        ...

    @abstractmethod
    def render_page(self, index: int) -> np.ndarray:
        """Render a page to a BGR raster."""

    @abstractmethod
    def extract_images(self, index: int) -> List[ImageElement]:
        """Images embedded in the page's native layer."""

    @abstractmethod
    def has_text_layer(self, index: int) -> bool:
        ...

    @abstractmethod
    def text_fragments(self, index: int) -> Tuple[List[TextFragment], float, float]:
        """Return (fragments, page_width, page_height) of the native text layer."""

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PdfDocument(DocumentSource):
    """
    PDF source backed by PyMuPDF, rendered through pdf2image.

    Raises:
        DocumentLoadFailure: If the file cannot be opened as a PDF
    """

    file_type = "pdf"

    def __init__(self, pdf_path: Union[str, Path], dpi: int = 150):
        import fitz

        self.path = Path(pdf_path)
        self.dpi = dpi

        if not self.path.exists():
            raise DocumentLoadFailure(f"PDF file not found: {self.path}")

        try:
            self._doc = fitz.open(str(self.path))
        except Exception as e:
            raise DocumentLoadFailure(f"Failed to parse PDF: {e}") from e

        if self._doc.needs_pass:
            self._doc.close()
            raise DocumentLoadFailure(f"PDF is password protected: {self.path}")
        if self._doc.page_count == 0:
            self._doc.close()
            raise DocumentLoadFailure(f"PDF has no pages: {self.path}")

        logger.info(f"Opened PDF {self.path.name}: {self._doc.page_count} pages")

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def render_page(self, index: int) -> np.ndarray:
        from pdf2image import convert_from_path
        from pdf2image.exceptions import (
            PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
        )

        try:
            pil_images = convert_from_path(
                self.path,
                dpi=self.dpi,
                first_page=index + 1,
                last_page=index + 1,
                fmt='png'
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            logger.debug(f"pdf2image failed on page {index + 1} ({e}), rendering with PyMuPDF")
            return self._render_with_fitz(index)

        if not pil_images:
            return self._render_with_fitz(index)
        return to_bgr(np.array(pil_images[0]))

    def _render_with_fitz(self, index: int) -> np.ndarray:
        import fitz

        zoom = self.dpi / 72
        pix = self._doc[index].get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        samples = np.frombuffer(pix.samples, dtype=np.uint8)
        return to_bgr(samples.reshape(pix.height, pix.width, pix.n))

    def extract_images(self, index: int) -> List[ImageElement]:
        try:
            page = self._doc[index]
            rect = page.rect
            elements = []

            for image_info in page.get_images(full=True):
                xref = image_info[0]
                extracted = self._doc.extract_image(xref)
                if not extracted:
                    continue

                ext = extracted.get("ext", "png").lower()
                for placement in page.get_image_rects(xref):
                    elements.append(ImageElement(
                        box=Box.clamped(
                            (placement.x0 - rect.x0) / rect.width * 100,
                            (placement.y0 - rect.y0) / rect.height * 100,
                            placement.width / rect.width * 100,
                            placement.height / rect.height * 100
                        ),
                        data=extracted["image"],
                        mime_type=_MIME_TYPES.get(ext, f"image/{ext}"),
                        pixel_width=extracted.get("width", 0),
                        pixel_height=extracted.get("height", 0),
                        source="native"
                    ))
        except Exception as e:
            raise ContainerDecodeFailure(f"Could not extract images from page {index + 1}: {e}") from e

        logger.debug(f"Page {index + 1}: {len(elements)} native images")
        return elements

    def has_text_layer(self, index: int) -> bool:
        try:
            return bool(self._doc[index].get_text("text").strip())
        except Exception as e:
            raise ContainerDecodeFailure(f"Could not read text layer of page {index + 1}: {e}") from e

    def text_fragments(self, index: int) -> Tuple[List[TextFragment], float, float]:
        try:
            page = self._doc[index]
            width, height = page.rect.width, page.rect.height
            content = page.get_text("dict")
        except Exception as e:
            raise ContainerDecodeFailure(f"Could not read text layer of page {index + 1}: {e}") from e

        fragments = []
        for block in content.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                cos, sin = line.get("dir", (1.0, 0.0))
                for span in line.get("spans", []):
                    size = span["size"]
                    origin_x, origin_y = span["origin"]
                    x0, _, x1, _ = span["bbox"]
                    # PyMuPDF is top-down; text matrices are bottom-up
                    fragments.append(TextFragment(
                        text=span["text"],
                        transform=(size * cos, -size * sin, size * sin, size * cos,
                                   origin_x, height - origin_y),
                        width=x1 - x0
                    ))

        return fragments, width, height

    def close(self):
        self._doc.close()


class ImageDocument(DocumentSource):
    """
    One page per image file; no native image or text layer.

    Files whose header no image codec recognizes are dropped with a warning.

    Raises:
        DocumentLoadFailure: If no readable image remains
    """

    file_type = "image"

    def __init__(self, image_paths: List[Union[str, Path]]):
        import cv2

        paths = [Path(p) for p in image_paths]
        if len(paths) > 1:
            self.file_type = "image_folder"

        self.paths = []
        skipped = []
        for path in paths:
            if path.is_file() and cv2.haveImageReader(str(path)):
                self.paths.append(path)
            else:
                logger.warning(f"Skipping unreadable image: {path}")
                skipped.append(f"Skipped unreadable image: {path.name}")

        if not self.paths:
            if len(paths) == 1:
                raise DocumentLoadFailure(f"Could not decode image: {paths[0]}")
            raise DocumentLoadFailure("No readable images to process")
        self.load_warnings = tuple(skipped)

    @property
    def page_count(self) -> int:
        return len(self.paths)

    def render_page(self, index: int) -> np.ndarray:
        return load_image(self.paths[index])

    def extract_images(self, index: int) -> List[ImageElement]:
        return []

    def has_text_layer(self, index: int) -> bool:
        return False

    def text_fragments(self, index: int) -> Tuple[List[TextFragment], float, float]:
        h, w = self.render_page(index).shape[:2]
        return [], float(w), float(h)


def open_document(input_path: Union[str, Path], dpi: int = 150) -> DocumentSource:
    """
    Open a PDF, an image, or a folder of images as a document source.

    Raises:
        DocumentLoadFailure: If the input is missing or unsupported
    """
    input_path = Path(input_path)
    input_type = detect_input_type(input_path)

    if input_type == 'pdf':
        return PdfDocument(input_path, dpi=dpi)
    if input_type == 'image':
        return ImageDocument([input_path])
    if input_type == 'image_folder':
        image_files = sorted(
            f for f in input_path.iterdir()
            if f.suffix.lower() in IMAGE_EXTENSIONS
        )
        logger.info(f"Found {len(image_files)} images in {input_path}")
        return ImageDocument(image_files)

    raise DocumentLoadFailure(f"Unsupported or missing input: {input_path}")


# ============================================================================
# Image Loading
# ============================================================================

def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """
    Load an image from file.

    Args:
        image_path: Path to the image file

    Returns:
        Numpy array representing the image (BGR format)

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If image cannot be decoded
    """
    import cv2

    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    img = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError(f"Could not decode image: {image_path}")

    logger.debug(f"Loaded image: {image_path}, shape: {img.shape}")
    return img


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, bytes, enums and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, bytes):
            return base64.b64encode(obj).decode("ascii")
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, etc.)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# File Type Detection
# ============================================================================

def detect_input_type(input_path: Union[str, Path]) -> str:
    """
    Detect the type of input file or directory.

    Args:
        input_path: Path to file or directory

    Returns:
        One of: 'pdf', 'image', 'image_folder', 'unknown'
    """
    input_path = Path(input_path)

    if input_path.is_dir():
        has_images = any(
            f.suffix.lower() in IMAGE_EXTENSIONS
            for f in input_path.iterdir()
        )
        return 'image_folder' if has_images else 'unknown'

    if not input_path.exists():
        return 'unknown'

    suffix = input_path.suffix.lower()
    if suffix == '.pdf':
        return 'pdf'
    elif suffix in IMAGE_EXTENSIONS:
        return 'image'

    return 'unknown'
