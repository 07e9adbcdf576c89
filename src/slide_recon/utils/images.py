"""
Raster image utilities for the slide reconstruction pipeline.

Provides:
- Encoding page rasters for OCR backends
- Decoding image payloads
- Cropping OCR-reported regions into image elements
"""

import logging
from typing import List, Sequence
import numpy as np

from .layout import Box, ImageElement

logger = logging.getLogger(__name__)


# ============================================================================
# Encoding / Decoding
# ============================================================================

def encode_image(
    image: np.ndarray,
    ext: str = ".png",
    jpeg_quality: int = 90
) -> bytes:
    """
    Encode an image array to bytes.

    Args:
        image: Image array (BGR or grayscale)
        ext: Target format extension (".png", ".jpg")
        jpeg_quality: JPEG quality (1-100), ignored for PNG

    Returns:
        Encoded image bytes

    Raises:
        ValueError: If OpenCV cannot encode the image
    """
    import cv2

    params = []
    if ext.lower() in (".jpg", ".jpeg"):
        params = [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality]

    ok, buffer = cv2.imencode(ext, image, params)
    if not ok:
        raise ValueError(f"Could not encode image as {ext}")
    return buffer.tobytes()


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes to a BGR array.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    import cv2

    array = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(array, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return image


def to_bgr(image: np.ndarray) -> np.ndarray:
    """Convert an RGB/RGBA/grayscale array from a PIL-style source to BGR."""
    import cv2

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
    return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)


# ============================================================================
# Region Cropping
# ============================================================================

def crop_image_regions(
    page_image: np.ndarray,
    regions: Sequence[Box]
) -> List[ImageElement]:
    """
    Crop percentage regions from a rendered page into image elements.

    Args:
        page_image: Full page raster (BGR)
        regions: Regions reported by OCR, in page percentages

    Returns:
        PNG image elements tagged as OCR-derived
    """
    if not regions:
        return []

    h, w = page_image.shape[:2]
    elements = []

    for region in regions:
        sx = int(region.x / 100 * w)
        sy = int(region.y / 100 * h)
        sw = max(1, round(region.width / 100 * w))
        sh = max(1, round(region.height / 100 * h))

        crop = page_image[sy:min(sy + sh, h), sx:min(sx + sw, w)]
        if crop.size == 0:
            logger.debug(f"Skipping empty crop for region {region.to_dict()}")
            continue

        elements.append(ImageElement(
            box=region,
            data=encode_image(crop, ".png"),
            mime_type="image/png",
            pixel_width=crop.shape[1],
            pixel_height=crop.shape[0],
            source="ocr"
        ))

    return elements
