"""
Slide Reconstruction Pipeline
=============================

Turns document pages (PDF pages or page images) into editable slide
layouts: positioned text blocks and image regions in page percentages.

Main components:
- OCR orchestration across a local server, Vertex AI and the Gemini API
- Rate-limit circuit breaking per document
- Deduplication of OCR-cropped images against native images
- Text-layer fallback with run merging
- Page and document assembly with progress reporting
"""

__version__ = "1.0.0"
__author__ = "Slide Reconstruction Team"
