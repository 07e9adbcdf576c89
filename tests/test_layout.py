"""
Tests for layout primitives and image deduplication.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestBox:
    """Test Box class."""

    def test_box_properties(self):
        """Test computed edges and area."""
        from slide_recon.utils.layout import Box

        box = Box(10, 20, 30, 40)

        assert box.x2 == 40
        assert box.y2 == 60
        assert box.area == 1200

    def test_clamped_limits_range(self):
        """Test clamping of out-of-range values."""
        from slide_recon.utils.layout import Box

        box = Box.clamped(-5, 120, 250, 0)

        assert box.x == 0
        assert box.y == 100
        assert box.width == 100
        assert box.height == 1.0  # minimum extent

    def test_from_untrusted_handles_garbage(self):
        """Test that missing or non-numeric fields read as zero."""
        from slide_recon.utils.layout import Box

        box = Box.from_untrusted({"x": "abc", "y": None, "width": 50})

        assert box.x == 0
        assert box.y == 0
        assert box.width == 50
        assert box.height == 1.0

    def test_from_untrusted_nan(self):
        """Test that NaN is treated as missing."""
        from slide_recon.utils.layout import Box

        box = Box.from_untrusted({"x": float("nan"), "y": 10, "width": 10, "height": 10})

        assert box.x == 0

    def test_intersection_area(self):
        """Test intersection area calculation."""
        from slide_recon.utils.layout import Box

        a = Box(0, 0, 50, 50)
        b = Box(25, 25, 50, 50)

        assert a.intersection_area(b) == 25 * 25

    def test_to_dict(self):
        """Test serialization."""
        from slide_recon.utils.layout import Box

        assert Box(1, 2, 3, 4).to_dict() == {"x": 1, "y": 2, "width": 3, "height": 4}


class TestOverlapRatio:
    """Test overlap measurement."""

    def test_symmetric(self):
        """Test overlap(a, b) == overlap(b, a)."""
        from slide_recon.utils.layout import Box, overlap_ratio

        a = Box(0, 0, 40, 40)
        b = Box(20, 10, 60, 30)

        assert overlap_ratio(a, b) == pytest.approx(overlap_ratio(b, a))

    def test_nested_box_is_full_overlap(self):
        """Test that a box inside another overlaps completely."""
        from slide_recon.utils.layout import Box, overlap_ratio

        outer = Box(0, 0, 80, 80)
        inner = Box(10, 10, 20, 20)

        assert overlap_ratio(outer, inner) == 1.0

    def test_disjoint_boxes(self):
        """Test that disjoint boxes do not overlap."""
        from slide_recon.utils.layout import Box, overlap_ratio

        assert overlap_ratio(Box(0, 0, 10, 10), Box(50, 50, 10, 10)) == 0.0

    def test_touching_boxes(self):
        """Test that boxes sharing an edge do not overlap."""
        from slide_recon.utils.layout import Box, overlap_ratio

        assert overlap_ratio(Box(0, 0, 10, 10), Box(10, 0, 10, 10)) == 0.0

    def test_zero_area(self):
        """Test that a degenerate box yields zero."""
        from slide_recon.utils.layout import Box, overlap_ratio

        assert overlap_ratio(Box(0, 0, 0, 10), Box(0, 0, 10, 10)) == 0.0

    def test_accepts_elements(self):
        """Test that boxed elements can be compared directly."""
        from slide_recon.utils.layout import Box, ImageElement, overlap_ratio

        element = ImageElement(Box(0, 0, 10, 10), b"", "image/png", 1, 1)

        assert overlap_ratio(element, Box(0, 0, 10, 10)) == 1.0


class TestDeduplicateImages:
    """Test deduplication of OCR crops against native images."""

    def _image(self, x, y, w, h, source):
        from slide_recon.utils.layout import Box, ImageElement
        return ImageElement(Box(x, y, w, h), b"data", "image/png", 10, 10, source=source)

    def test_drops_significant_overlap(self):
        """Test that a crop covering 60% of a native image is dropped."""
        from slide_recon.utils.layout import deduplicate_images

        native = [self._image(10, 10, 40, 40, "native")]
        # Same height, shifted right by 16% -> 24/40 = 60% of the smaller area
        crop = self._image(26, 10, 40, 40, "ocr")

        assert deduplicate_images(native, [crop]) == []

    def test_keeps_small_overlap(self):
        """Test that a crop overlapping by 40% survives."""
        from slide_recon.utils.layout import deduplicate_images

        native = [self._image(10, 10, 40, 40, "native")]
        crop = self._image(34, 10, 40, 40, "ocr")  # 16/40 = 40%

        assert deduplicate_images(native, [crop]) == [crop]

    def test_threshold_is_exclusive(self):
        """Test that exactly 50% overlap is not a duplicate."""
        from slide_recon.utils.layout import deduplicate_images

        native = [self._image(0, 0, 40, 40, "native")]
        crop = self._image(20, 0, 40, 40, "ocr")

        assert deduplicate_images(native, [crop]) == [crop]

    def test_preserves_candidate_order(self):
        """Test that survivors keep their input order."""
        from slide_recon.utils.layout import deduplicate_images

        native = [self._image(0, 0, 20, 20, "native")]
        first = self._image(50, 50, 10, 10, "ocr")
        dup = self._image(2, 2, 10, 10, "ocr")
        last = self._image(80, 0, 10, 10, "ocr")

        assert deduplicate_images(native, [first, dup, last]) == [first, last]

    def test_no_trusted_images(self):
        """Test that nothing is dropped without native images."""
        from slide_recon.utils.layout import deduplicate_images

        crops = [self._image(0, 0, 10, 10, "ocr"), self._image(0, 0, 10, 10, "ocr")]

        assert deduplicate_images([], crops) == crops


class TestTextElement:
    """Test TextElement normalization."""

    def test_from_ocr(self):
        """Test normalization of a well-formed OCR element."""
        from slide_recon.utils.layout import TextElement

        element = TextElement.from_ocr({
            "text": "Title",
            "x": 5, "y": 5, "width": 90, "height": 10,
            "fontSize": 6,
            "fontWeight": "bold",
            "fontColor": "#1A2B3C"
        })

        assert element.text == "Title"
        assert element.font_size == 6
        assert element.font_weight == "bold"
        assert element.font_color == "#1A2B3C"
        assert element.text_align == "left"
        assert element.edited is False
        assert element.element_id

    def test_from_ocr_nfc(self):
        """Test that text is converted to NFC."""
        from slide_recon.utils.layout import TextElement

        element = TextElement.from_ocr({"text": "Cafe\u0301", "x": 0, "y": 0, "width": 10, "height": 5})

        assert element.text == "Caf\u00e9"

    def test_from_ocr_drops_invalid_style(self):
        """Test that unknown weight and malformed colors are dropped."""
        from slide_recon.utils.layout import TextElement

        element = TextElement.from_ocr({
            "text": "x", "fontWeight": "heavy", "fontColor": "red", "fontSize": 500
        })

        assert element.font_weight is None
        assert element.font_color is None
        assert element.font_size == 100

    def test_unique_ids(self):
        """Test that element ids are unique."""
        from slide_recon.utils.layout import Box, TextElement

        a = TextElement(Box(0, 0, 10, 10), "a", 2)
        b = TextElement(Box(0, 0, 10, 10), "b", 2)

        assert a.element_id != b.element_id

    def test_to_dict_keys(self):
        """Test serialization keys."""
        from slide_recon.utils.layout import Box, TextElement

        data = TextElement(Box(1, 2, 3, 4), "hi", 2.5, font_weight="normal").to_dict()

        assert data["text"] == "hi"
        assert data["fontSize"] == 2.5
        assert data["fontWeight"] == "normal"
        assert "fontColor" not in data
        assert data["isEdited"] is False


class TestImageElement:
    """Test ImageElement serialization."""

    def test_to_dict_with_data(self):
        """Test that image data is base64 encoded."""
        from slide_recon.utils.layout import Box, ImageElement

        data = ImageElement(Box(0, 0, 10, 10), b"abc", "image/png", 4, 3).to_dict()

        assert data["imageBase64"] == "YWJj"
        assert data["originalWidth"] == 4
        assert data["originalHeight"] == 3
        assert data["source"] == "native"

    def test_to_dict_without_data(self):
        """Test omitting the payload."""
        from slide_recon.utils.layout import Box, ImageElement

        data = ImageElement(Box(0, 0, 10, 10), b"abc", "image/png", 4, 3).to_dict(include_data=False)

        assert "imageBase64" not in data
