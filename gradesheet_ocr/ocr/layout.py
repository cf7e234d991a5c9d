"""Line reconstruction from positioned OCR text blocks.

Word-level blocks are grouped into lines by their vertical centers.
Wide horizontal gaps between neighbouring words become ``|`` cell
separators so the row parser can recover table columns.
"""

from statistics import median

from gradesheet_ocr.utils.arabic import is_mostly_arabic
from gradesheet_ocr.utils.logger import get_logger

from .provider import ProviderResponse, TextBlock

logger = get_logger(__name__)

CELL_SEPARATOR = " | "


def group_blocks_into_lines(
    blocks: list[TextBlock], gap_ratio: float = 1.5
) -> list[str]:
    """Group positioned blocks into text lines.

    Args:
        blocks: Text blocks carrying bounding boxes.
        gap_ratio: Horizontal gap, in multiples of the median word
            height, above which a cell separator is inserted.

    Returns:
        Lines from top to bottom. Words are ordered right-to-left when
        the page is mostly Arabic.
    """
    positioned = [b for b in blocks if b.bounding_box is not None and b.text.strip()]
    if not positioned:
        return []

    heights = [b.bounding_box.height for b in positioned if b.bounding_box.height > 0]
    line_height = median(heights) if heights else 10.0
    tolerance = line_height / 2
    rtl = is_mostly_arabic(" ".join(b.text for b in positioned))

    rows: list[list[TextBlock]] = []
    for block in sorted(positioned, key=lambda b: b.bounding_box.center_y):
        if rows:
            current = rows[-1]
            center = sum(b.bounding_box.center_y for b in current) / len(current)
            if abs(block.bounding_box.center_y - center) <= tolerance:
                current.append(block)
                continue
        rows.append([block])

    lines = [_join_row(row, rtl, gap_ratio * line_height) for row in rows]
    logger.debug("Reconstructed %d lines from %d blocks", len(lines), len(positioned))
    return lines


def _join_row(row: list[TextBlock], rtl: bool, max_gap: float) -> str:
    ordered = sorted(row, key=lambda b: b.bounding_box.x, reverse=rtl)
    parts = [ordered[0].text.strip()]
    for prev, block in zip(ordered, ordered[1:]):
        a, b = prev.bounding_box, block.bounding_box
        if rtl:
            gap = a.x - (b.x + b.width)
        else:
            gap = b.x - (a.x + a.width)
        parts.append(CELL_SEPARATOR if gap > max_gap else " ")
        parts.append(block.text.strip())
    return "".join(parts)


def response_to_lines(response: ProviderResponse) -> list[str]:
    """Turn a provider response into text lines for table analysis.

    Positioned blocks are laid out spatially; otherwise the raw full
    text is split on newlines, falling back to one line per block.
    """
    blocks = response.text_blocks
    if blocks and all(b.bounding_box is not None for b in blocks):
        return group_blocks_into_lines(blocks)
    if response.raw_full_text:
        return [line for line in response.raw_full_text.splitlines() if line.strip()]
    return [b.text for b in blocks if b.text.strip()]
