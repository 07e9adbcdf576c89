"""
Configuration and constants for the slide reconstruction pipeline.

This module provides:
- Global configuration settings
- OCR engine endpoints and cloud credentials
- Rendering parameters
- Environment variable overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List
import logging

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("slide_recon")


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class OCRConfig:
    """OCR engine configuration."""
    # Engines to try, always in priority order paddleocr -> vertexai -> gemini
    enabled_engines: List[str] = field(default_factory=lambda: [
        "paddleocr", "vertexai", "gemini"
    ])
    # Local OCR server (optional)
    local_url: Optional[str] = None
    local_health_timeout: float = 2.0
    local_ocr_timeout: float = 30.0
    # Vertex AI
    vertex_project_id: Optional[str] = None
    vertex_location: str = "us-central1"
    vertex_credentials_json: Optional[str] = None
    # Gemini API
    gemini_api_key: Optional[str] = None
    # Shared by both cloud backends
    model_name: str = "gemini-2.0-flash"
    cloud_timeout: float = 30.0


@dataclass
class RenderConfig:
    """Page rendering configuration."""
    dpi: int = 150
    # JPEG quality of the page raster sent to OCR
    jpeg_quality: int = 90


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    ocr: OCRConfig = field(default_factory=OCRConfig)
    render: RenderConfig = field(default_factory=RenderConfig)

    # Global settings
    output_format: str = "pptx"  # pptx or docx
    include_image_data: bool = True
    debug_mode: bool = False


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    config.ocr.local_url = (
        os.environ.get("SLIDE_RECON_LOCAL_OCR_URL")
        or os.environ.get("PADDLE_OCR_URL")
    )

    # Cloud credentials from environment
    config.ocr.vertex_project_id = os.environ.get("VERTEX_PROJECT_ID")
    config.ocr.vertex_location = os.environ.get("VERTEX_LOCATION", config.ocr.vertex_location)
    config.ocr.vertex_credentials_json = os.environ.get("GOOGLE_CREDENTIALS_JSON")
    config.ocr.gemini_api_key = os.environ.get("GEMINI_API_KEY")
    config.ocr.model_name = os.environ.get("GEMINI_MODEL", config.ocr.model_name)

    dpi = os.environ.get("SLIDE_RECON_DPI")
    if dpi:
        try:
            config.render.dpi = int(dpi)
        except ValueError:
            logger.warning(f"Ignoring invalid SLIDE_RECON_DPI value: {dpi}")

    if os.environ.get("SLIDE_RECON_DEBUG", "").lower() == "true":
        config.debug_mode = True

    return config


# ============================================================================
# Output Formats
# ============================================================================

OUTPUT_FORMATS = ("pptx", "docx")


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
