"""
Native text layer extraction for slide reconstruction.

Used when OCR is unavailable for a page and the source document carries
its own text layer. Provides:
- Conversion of text-content fragments to page-relative runs
- Greedy single-pass merging of runs into reading blocks
- TextElement construction with default styling
"""

import logging
import math
import unicodedata
from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

from .layout import Box, TextElement

logger = logging.getLogger(__name__)


# ============================================================================
# Merge Parameters (percent of page size)
# ============================================================================

VERTICAL_TOLERANCE_FACTOR = 0.7
MAX_MERGE_GAP = 3.0
SPACE_GAP = 0.5
LINE_HEIGHT_FACTOR = 1.3
AVERAGE_GLYPH_WIDTH = 0.6  # Fraction of font size, used when width is unknown


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class TextFragment:
    """
    One item of a native text-content stream.

    The transform is the PDF text matrix (a, b, c, d, e, f) in user space,
    with the origin at the bottom-left of the page.
    """
    text: str
    transform: Tuple[float, float, float, float, float, float]
    width: float = 0.0  # Advance width in points; 0 when unknown


@dataclass
class RawTextRun:
    """A positioned text run in page percentages, before merging."""
    text: str
    x: float
    y: float
    width: float
    height: float
    font_size: float


# ============================================================================
# Fragment Conversion
# ============================================================================

def runs_from_fragments(
    fragments: Sequence[TextFragment],
    page_width: float,
    page_height: float
) -> List[RawTextRun]:
    """
    Convert text-content fragments into page-relative runs.

    Args:
        fragments: Fragments from the document's text layer
        page_width: Page width in points
        page_height: Page height in points

    Returns:
        List of runs, skipping whitespace-only fragments
    """
    if page_width <= 0 or page_height <= 0:
        raise ValueError(f"Invalid page size: {page_width}x{page_height}")

    runs = []
    for fragment in fragments:
        if not fragment.text.strip():
            continue

        a, b, _, _, tx, ty = fragment.transform
        font_size_pt = math.hypot(a, b)
        font_size_pct = font_size_pt / page_height * 100
        width_pt = fragment.width or font_size_pt * len(fragment.text) * AVERAGE_GLYPH_WIDTH

        runs.append(RawTextRun(
            text=unicodedata.normalize("NFC", fragment.text),
            x=tx / page_width * 100,
            y=(page_height - ty) / page_height * 100,
            width=width_pt / page_width * 100,
            height=font_size_pct * LINE_HEIGHT_FACTOR,
            font_size=font_size_pct
        ))

    return runs


# ============================================================================
# Run Merging
# ============================================================================

def _union(block: RawTextRun, run: RawTextRun, separator: str) -> RawTextRun:
    x1 = min(block.x, run.x)
    y1 = min(block.y, run.y)
    x2 = max(block.x + block.width, run.x + run.width)
    y2 = max(block.y + block.height, run.y + run.height)
    return RawTextRun(
        text=block.text + separator + run.text,
        x=x1,
        y=y1,
        width=x2 - x1,
        height=y2 - y1,
        font_size=max(block.font_size, run.font_size)
    )


def merge_text_runs(runs: Sequence[RawTextRun]) -> List[RawTextRun]:
    """
    Merge runs into reading blocks with one greedy sweep.

    Runs are ordered top-to-bottom, then left-to-right. A run joins the
    open block when it sits on the same visual line (within 0.7x the
    taller line height) and starts less than 3% of page width after the
    block ends. Adjacent labels on one line closer than that are merged
    too; that is an accepted approximation.

    Args:
        runs: Unordered runs from one page

    Returns:
        Merged blocks in reading order
    """
    if not runs:
        return []

    ordered = sorted(runs, key=lambda r: (r.y, r.x, r.text))
    blocks = []
    current = replace(ordered[0])

    for run in ordered[1:]:
        tolerance = VERTICAL_TOLERANCE_FACTOR * max(current.height, run.height)
        gap = run.x - (current.x + current.width)

        if abs(run.y - current.y) <= tolerance and gap < MAX_MERGE_GAP:
            separator = " " if gap > SPACE_GAP else ""
            current = _union(current, run, separator)
        else:
            blocks.append(current)
            current = replace(run)

    blocks.append(current)
    return blocks


def build_text_elements(blocks: Sequence[RawTextRun]) -> List[TextElement]:
    """Create text elements with default styling; the text layer has no weight or color."""
    return [
        TextElement(
            box=Box.clamped(block.x, block.y, block.width, block.height),
            text=block.text,
            font_size=block.font_size,
            font_weight="normal",
            font_color="#000000",
            text_align="left"
        )
        for block in blocks
    ]


def extract_text_layer(
    fragments: Sequence[TextFragment],
    page_width: float,
    page_height: float
) -> List[TextElement]:
    """Full text-layer path: convert, merge, and build elements."""
    runs = runs_from_fragments(fragments, page_width, page_height)
    blocks = merge_text_runs(runs)
    logger.debug(f"Merged {len(runs)} text runs into {len(blocks)} blocks")
    return build_text_elements(blocks)
