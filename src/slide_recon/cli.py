#!/usr/bin/env python
"""
Command-line interface for the Slide Reconstruction Pipeline.

Usage:
    slide-recon --input <pdf_or_image> --output <output_dir> [options]

Examples:
    # Process a PDF into an editable presentation model
    slide-recon --input deck.pdf --output ./output

    # Use only the local OCR server
    slide-recon --input deck.pdf --output ./output --engines paddleocr --local-ocr-url http://localhost:8866

    # Document layout for a DOCX renderer, first three pages only
    slide-recon --input scan.pdf --output ./output --format docx --pages 1-3
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List

from . import __version__

logger = logging.getLogger("slide_recon")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="slide-recon",
        description="Slide Reconstruction Pipeline - Convert document pages into editable slide layouts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Process a PDF:
    slide-recon --input deck.pdf --output ./output

  Process a folder of slide screenshots without embedding image data:
    slide-recon --input ./slides --output ./output --no-image-data

  Process only specific pages:
    slide-recon --input deck.pdf --output ./output --pages 1-5

Environment:
  SLIDE_RECON_LOCAL_OCR_URL, VERTEX_PROJECT_ID, VERTEX_LOCATION,
  GOOGLE_CREDENTIALS_JSON, GEMINI_API_KEY, GEMINI_MODEL, SLIDE_RECON_DPI
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input PDF file, image, or folder of images"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for document.json"
    )

    # Optional arguments
    parser.add_argument(
        "--format", "-f",
        choices=["pptx", "docx"],
        default=None,
        help="Target output kind recorded in the document (default: pptx)"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="DPI for page rendering (default: 150)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--engines",
        nargs="+",
        choices=["paddleocr", "vertexai", "gemini"],
        default=None,
        help="OCR engines to enable; always tried in the order paddleocr, vertexai, gemini"
    )

    parser.add_argument(
        "--local-ocr-url",
        default=None,
        help="Base URL of a local OCR server (overrides SLIDE_RECON_LOCAL_OCR_URL)"
    )

    parser.add_argument(
        "--no-image-data",
        action="store_true",
        help="Omit base64 image payloads from document.json"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (re-raise errors with tracebacks)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_page_range(page_str: str) -> List[int]:
    """
    Parse page range string to list of page numbers.

    Raises:
        ValueError: If a part is not a number or a range
    """
    pages = []

    for part in page_str.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            pages.extend(range(max(1, int(start)), int(end) + 1))
        else:
            page = int(part)
            if page >= 1:
                pages.append(page)

    return sorted(set(pages))


def check_dependencies() -> bool:
    """Check if required dependencies are available."""
    missing = []
    optional_missing = []

    # Required
    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import fitz
    except ImportError:
        missing.append("pymupdf")

    try:
        import requests
    except ImportError:
        missing.append("requests")

    # Rendering (PyMuPDF is used when poppler is missing)
    try:
        import pdf2image
    except ImportError:
        optional_missing.append("pdf2image (for poppler page rendering)")

    # Cloud OCR
    try:
        import vertexai
    except ImportError:
        optional_missing.append("google-cloud-aiplatform (for Vertex AI OCR)")

    try:
        import google.generativeai
    except ImportError:
        optional_missing.append("google-generativeai (for Gemini API OCR)")

    # Report
    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install -e .")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some engines may be unavailable):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def run_pipeline(args) -> int:
    """Run the slide reconstruction pipeline."""
    from .config import get_config
    from .utils.assembler import DocumentAssembler
    from .utils.io import DocumentLoadFailure, ensure_dir, save_json

    start_time = time.time()

    config = get_config()
    if args.dpi:
        config.render.dpi = args.dpi
    if args.format:
        config.output_format = args.format
    if args.engines:
        config.ocr.enabled_engines = args.engines
    if args.local_ocr_url:
        config.ocr.local_url = args.local_ocr_url
    if args.no_image_data:
        config.include_image_data = False
    if args.debug:
        config.debug_mode = True

    pages = None
    if args.pages:
        try:
            pages = parse_page_range(args.pages)
        except ValueError:
            logger.error(f"Invalid page range: {args.pages}")
            return 1
        logger.info(f"Processing pages: {pages}")

    output_dir = ensure_dir(args.output)
    input_path = Path(args.input)

    def report(status):
        logger.debug(f"[{status.stage.value}] {status.current}/{status.total} ({status.percent_complete:.0f}%)")

    assembler = DocumentAssembler(config=config, progress_callback=report)
    logger.info(f"OCR engines: {', '.join(assembler.orchestrator.engine_names) or 'none'}")

    try:
        document = assembler.process_file(input_path, pages=pages)
    except DocumentLoadFailure as e:
        logger.error(f"Could not open {input_path}: {e}")
        if config.debug_mode:
            raise
        return 1

    json_path = output_dir / "document.json"
    save_json(document.to_dict(include_data=config.include_image_data), json_path)
    logger.info(f"Saved JSON: {json_path}")

    # Print summary
    elapsed = time.time() - start_time

    if not args.quiet:
        engines = sorted({p.engine for p in document.pages if p.engine})
        print("\n" + "="*60)
        print("SLIDE RECONSTRUCTION COMPLETE")
        print("="*60)
        print(f"Source: {input_path}")
        print(f"Output: {json_path}")
        print(f"Format: {document.output_format}")
        print(f"Pages processed: {len(document.pages)}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        print(f"  Text elements: {sum(len(p.text_elements) for p in document.pages)}")
        print(f"  Image elements: {sum(len(p.image_elements) for p in document.pages)}")
        print(f"  Engines used: {', '.join(engines) or 'none'}")
        if document.warnings:
            print()
            print("Warnings:")
            for warning in document.warnings:
                print(f"  - {warning}")
        print("="*60)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    # Check dependencies
    if not check_dependencies():
        sys.exit(1)

    # Run pipeline
    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
