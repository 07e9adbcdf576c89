"""
Layout primitives for slide reconstruction.

Provides:
- Percentage-based bounding boxes (Box)
- Text and image elements placed on a page
- Overlap measurement between boxes
- Deduplication of OCR-cropped images against native images

All coordinates are percentages of the page width (x, width) and
page height (y, height), in the range [0, 100].
"""

import base64
import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

MIN_BOX_EXTENT = 1.0  # Smallest width/height (percent) for untrusted boxes
DUPLICATE_OVERLAP_THRESHOLD = 0.5

FONT_WEIGHTS = ("bold", "normal")
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def new_element_id() -> str:
    """Generate an opaque unique element identifier."""
    return str(uuid.uuid4())


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN compares false against everything; treat it as missing
    return number if number == number else 0.0


# ============================================================================
# Bounding Box
# ============================================================================

@dataclass(frozen=True)
class Box:
    """Axis-aligned box in page percentages."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def clamped(cls, x: float, y: float, width: float, height: float) -> 'Box':
        """Build a box with every field clamped into [0, 100]."""
        return cls(
            x=_clamp(x),
            y=_clamp(y),
            width=_clamp(width, MIN_BOX_EXTENT),
            height=_clamp(height, MIN_BOX_EXTENT),
        )

    @classmethod
    def from_untrusted(cls, data: Dict[str, Any]) -> 'Box':
        """
        Build a box from an untrusted mapping (OCR output, JSON input).

        Missing or non-numeric fields read as 0 before clamping.
        """
        return cls.clamped(
            _to_float(data.get("x")),
            _to_float(data.get("y")),
            _to_float(data.get("width")),
            _to_float(data.get("height")),
        )

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def intersection_area(self, other: 'Box') -> float:
        ix1 = max(self.x, other.x)
        iy1 = max(self.y, other.y)
        ix2 = min(self.x2, other.x2)
        iy2 = min(self.y2, other.y2)
        if ix2 <= ix1 or iy2 <= iy1:
            return 0.0
        return (ix2 - ix1) * (iy2 - iy1)

    def overlap_ratio(self, other: 'Box') -> float:
        """Intersection area divided by the smaller of the two areas."""
        min_area = min(self.area, other.area)
        if min_area <= 0:
            return 0.0
        return self.intersection_area(other) / min_area

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height
        }


# ============================================================================
# Page Elements
# ============================================================================

@dataclass
class TextElement:
    """A block of text positioned on a page."""
    box: Box
    text: str
    font_size: float
    font_weight: Optional[str] = None
    font_color: Optional[str] = None
    text_align: str = "left"
    edited: bool = False
    element_id: str = ""

    def __post_init__(self):
        if not self.element_id:
            self.element_id = new_element_id()

    @classmethod
    def from_ocr(cls, data: Dict[str, Any]) -> 'TextElement':
        """
        Normalize one OCR-reported text element.

        Text is converted to NFC, the box and font size are clamped, and
        unrecognized weight/color values are dropped.
        """
        weight = data.get("fontWeight")
        color = data.get("fontColor")
        return cls(
            box=Box.from_untrusted(data),
            text=unicodedata.normalize("NFC", str(data.get("text") or "")),
            font_size=_clamp(_to_float(data.get("fontSize"))),
            font_weight=weight if weight in FONT_WEIGHTS else None,
            font_color=color if isinstance(color, str) and _HEX_COLOR.match(color) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.element_id,
            "text": self.text,
            **self.box.to_dict(),
            "fontSize": self.font_size,
            "textAlign": self.text_align,
            "isEdited": self.edited
        }
        if self.font_weight is not None:
            result["fontWeight"] = self.font_weight
        if self.font_color is not None:
            result["fontColor"] = self.font_color
        return result


@dataclass
class ImageElement:
    """An image placed on a page, with its encoded payload."""
    box: Box
    data: bytes
    mime_type: str
    pixel_width: int
    pixel_height: int
    source: str = "native"  # native (container image) or ocr (cropped region)
    element_id: str = ""

    def __post_init__(self):
        if not self.element_id:
            self.element_id = new_element_id()

    def to_dict(self, include_data: bool = True) -> Dict[str, Any]:
        result = {
            "id": self.element_id,
            **self.box.to_dict(),
            "mimeType": self.mime_type,
            "originalWidth": self.pixel_width,
            "originalHeight": self.pixel_height,
            "source": self.source
        }
        if include_data:
            result["imageBase64"] = base64.b64encode(self.data).decode("ascii")
        return result


# ============================================================================
# Deduplication
# ============================================================================

Boxed = TypeVar("Boxed")


def _box_of(item: Union[Box, Any]) -> Box:
    return item if isinstance(item, Box) else item.box


def overlap_ratio(a: Union[Box, Any], b: Union[Box, Any]) -> float:
    """Overlap of two boxes (or boxed elements) relative to the smaller one."""
    return _box_of(a).overlap_ratio(_box_of(b))


def deduplicate_images(
    trusted: Sequence[Any],
    candidates: Sequence[Boxed],
    threshold: float = DUPLICATE_OVERLAP_THRESHOLD
) -> List[Boxed]:
    """
    Remove candidates that significantly overlap any trusted box.

    Args:
        trusted: Boxes from the native image layer (never removed)
        candidates: Boxes cropped from OCR-reported regions
        threshold: Overlap ratio above which a candidate is dropped

    Returns:
        Surviving candidates, in their original order
    """
    if not trusted:
        return list(candidates)

    survivors = []
    for candidate in candidates:
        duplicate = any(
            overlap_ratio(candidate, native) > threshold
            for native in trusted
        )
        if duplicate:
            logger.debug(f"Dropping OCR image region {_box_of(candidate).to_dict()} (overlaps native image)")
        else:
            survivors.append(candidate)

    return survivors
