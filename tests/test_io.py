"""
Tests for document sources and JSON output.
"""

import json

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def logo_png():
    """Encoded 40x30 PNG."""
    import cv2

    img = np.zeros((30, 40, 3), dtype=np.uint8)
    img[:, :, 1] = 200
    ok, buffer = cv2.imencode(".png", img)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def sample_pdf(tmp_path, logo_png):
    """Create a one-page 600x400 PDF with a text line and an embedded image."""
    import fitz

    pdf_path = tmp_path / "deck.pdf"
    doc = fitz.open()
    page = doc.new_page(width=600, height=400)
    page.insert_text((60, 100), "Hello slide", fontsize=24)
    page.insert_image(fitz.Rect(300, 200, 500, 350), stream=logo_png)
    doc.save(str(pdf_path))
    doc.close()
    return pdf_path


@pytest.fixture
def image_folder(tmp_path):
    """Create a folder with two slide screenshots."""
    import cv2

    folder = tmp_path / "slides"
    folder.mkdir()
    for name in ("b.png", "a.png"):
        cv2.imwrite(str(folder / name), np.ones((90, 160, 3), dtype=np.uint8) * 255)
    (folder / "notes.txt").write_text("not an image")
    return folder


class TestDetectInputType:
    """Test input type detection."""

    def test_pdf(self, sample_pdf):
        from slide_recon.utils.io import detect_input_type
        assert detect_input_type(sample_pdf) == "pdf"

    def test_image_and_folder(self, image_folder):
        from slide_recon.utils.io import detect_input_type
        assert detect_input_type(image_folder / "a.png") == "image"
        assert detect_input_type(image_folder) == "image_folder"

    def test_unknown(self, tmp_path):
        from slide_recon.utils.io import detect_input_type
        assert detect_input_type(tmp_path / "missing.pdf") == "unknown"
        (tmp_path / "empty").mkdir()
        assert detect_input_type(tmp_path / "empty") == "unknown"


class TestPdfDocument:
    """Test the PDF source."""

    def test_page_count(self, sample_pdf):
        """Test page count."""
        from slide_recon.utils.io import PdfDocument

        with PdfDocument(sample_pdf) as doc:
            assert doc.page_count == 1
            assert doc.file_type == "pdf"

    def test_render_page(self, sample_pdf):
        """Test rendering at 72 DPI yields the page size in pixels."""
        from slide_recon.utils.io import PdfDocument

        with PdfDocument(sample_pdf, dpi=72) as doc:
            raster = doc.render_page(0)

        assert raster.ndim == 3 and raster.shape[2] == 3
        assert abs(raster.shape[1] - 600) <= 2
        assert abs(raster.shape[0] - 400) <= 2

    def test_text_layer(self, sample_pdf):
        """Test text layer detection and fragment conversion."""
        from slide_recon.utils.io import PdfDocument

        with PdfDocument(sample_pdf) as doc:
            assert doc.has_text_layer(0)
            fragments, width, height = doc.text_fragments(0)

        assert (width, height) == (600, 400)
        assert "".join(f.text for f in fragments).strip() == "Hello slide"
        first = fragments[0]
        assert first.transform[0] == pytest.approx(24, abs=0.5)
        # Baseline at y=100 from the top is 300 from the bottom
        assert first.transform[5] == pytest.approx(300, abs=1)
        assert first.width > 0

    def test_native_images(self, sample_pdf):
        """Test native image extraction with page-relative boxes."""
        from slide_recon.utils.io import PdfDocument

        with PdfDocument(sample_pdf) as doc:
            images = doc.extract_images(0)

        assert len(images) == 1
        image = images[0]
        assert image.source == "native"
        assert image.mime_type.startswith("image/")
        assert (image.pixel_width, image.pixel_height) == (40, 30)
        assert image.box.x == pytest.approx(50, abs=0.5)
        assert image.box.y == pytest.approx(50, abs=0.5)
        assert image.box.width == pytest.approx(200 / 600 * 100, abs=0.5)
        assert image.box.height == pytest.approx(37.5, abs=0.5)

    def test_blank_page_has_no_text_layer(self, tmp_path):
        """Test a page without text."""
        import fitz
        from slide_recon.utils.io import PdfDocument

        path = tmp_path / "blank.pdf"
        doc = fitz.open()
        doc.new_page()
        doc.save(str(path))
        doc.close()

        with PdfDocument(path) as source:
            assert not source.has_text_layer(0)
            assert source.extract_images(0) == []

    def test_broken_file(self, tmp_path):
        """Test that a non-PDF file fails to load."""
        from slide_recon.utils.io import DocumentLoadFailure, PdfDocument

        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")

        with pytest.raises(DocumentLoadFailure):
            PdfDocument(path)


class TestOpenDocument:
    """Test source dispatch."""

    def test_folder(self, image_folder):
        """Test that a folder becomes a sorted multi-page source."""
        from slide_recon.utils.io import ImageDocument, open_document

        source = open_document(image_folder)

        assert isinstance(source, ImageDocument)
        assert source.file_type == "image_folder"
        assert [p.name for p in source.paths] == ["a.png", "b.png"]
        assert source.render_page(0).shape == (90, 160, 3)
        assert not source.has_text_layer(0)
        assert source.extract_images(0) == []

    def test_single_image(self, image_folder):
        """Test a single image source."""
        from slide_recon.utils.io import open_document

        source = open_document(image_folder / "a.png")

        assert source.page_count == 1
        assert source.file_type == "image"
        fragments, width, height = source.text_fragments(0)
        assert fragments == [] and (width, height) == (160, 90)

    def test_unsupported(self, tmp_path):
        """Test that unsupported input fails to load."""
        from slide_recon.utils.io import DocumentLoadFailure, open_document

        path = tmp_path / "notes.txt"
        path.write_text("hello")

        with pytest.raises(DocumentLoadFailure):
            open_document(path)

    def test_undecodable_image(self, tmp_path):
        """Test that an image file with garbage content fails to load."""
        from slide_recon.utils.io import DocumentLoadFailure, open_document

        path = tmp_path / "scan.png"
        path.write_bytes(b"not an image at all")

        with pytest.raises(DocumentLoadFailure):
            open_document(path)

    def test_folder_drops_unreadable(self, image_folder):
        """Test that unreadable files in a folder are skipped with a warning."""
        from slide_recon.utils.io import open_document

        (image_folder / "c.png").write_bytes(b"not an image at all")

        source = open_document(image_folder)

        assert [p.name for p in source.paths] == ["a.png", "b.png"]
        assert source.load_warnings == ("Skipped unreadable image: c.png",)

    def test_folder_without_readable_images(self, tmp_path):
        """Test that a folder of unreadable images fails to load."""
        from slide_recon.utils.io import DocumentLoadFailure, open_document

        folder = tmp_path / "scans"
        folder.mkdir()
        (folder / "a.png").write_bytes(b"garbage")
        (folder / "b.jpg").write_bytes(b"garbage")

        with pytest.raises(DocumentLoadFailure):
            open_document(folder)


class TestProcessingStatus:
    """Test progress snapshots."""

    def test_percent_complete(self):
        from slide_recon.utils.io import ProcessingStatus
        assert ProcessingStatus(current=1, total=4).percent_complete == 25.0
        assert ProcessingStatus().percent_complete == 0.0


class TestSaveJson:
    """Test JSON output."""

    def test_encodes_special_values(self, tmp_path):
        """Test numpy values, bytes and enums."""
        from slide_recon.utils.io import ProcessingStage, save_json

        path = save_json({
            "count": np.int64(3),
            "ratio": np.float32(0.5),
            "payload": b"abc",
            "stage": ProcessingStage.COMPLETE,
            "text": "Überblick"
        }, tmp_path / "out" / "data.json")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data == {
            "count": 3,
            "ratio": 0.5,
            "payload": "YWJj",
            "stage": "complete",
            "text": "Überblick"
        }
