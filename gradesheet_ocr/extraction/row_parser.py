"""Row splitting and student name extraction."""

import re

from gradesheet_ocr.utils.arabic import count_letters, normalize_digits

from .marks import is_numeric_cell
from .vocabulary import is_vocabulary_word

_DELIMITER_RE = re.compile(r"\t+|(?<!\d)،|،(?!\d)|\s{2,}")
_LEADING_NUMBER_RE = re.compile(r"^(\d{1,3})[.)\-]?\s+(?=\S)")
_NAME_RUN_RE = re.compile(
    r"[\u0621-\u063A\u0641-\u064A\u0671-\u06D3\u06FA-\u06FFA-Za-z\u00C0-\u024F]"
    r"[\u0621-\u063A\u0641-\u064A\u064B-\u0652\u0670\u0671-\u06D3"
    r"\u06FA-\u06FFA-Za-z\u00C0-\u024F\s'\-]*"
)


def _group_tokens(text: str) -> list[str]:
    """Split a single-spaced row: numbers stand alone, words join up."""
    cells: list[str] = []
    words: list[str] = []
    for token in text.split():
        if is_numeric_cell(token):
            if words:
                cells.append(" ".join(words))
                words = []
            cells.append(token)
        else:
            words.append(token)
    if words:
        cells.append(" ".join(words))
    return cells


def parse_row_into_cells(row: str) -> list[str]:
    """Split a table row into trimmed cells.

    Pipe-delimited rows keep inner empty cells so columns stay aligned.
    Other rows split on tabs, Arabic commas and runs of two or more
    spaces; a row that stays one cell is regrouped word by word, with
    each number in its own cell.

    Args:
        row: One line of OCR text.

    Returns:
        Cell texts in reading order.
    """
    text = normalize_digits(row).strip()
    if not text:
        return []

    if "|" in text:
        cells = [c.strip() for c in text.split("|")]
        if cells and not cells[0]:
            cells = cells[1:]
        if cells and not cells[-1]:
            cells = cells[:-1]
        return cells

    cells = [c.strip() for c in _DELIMITER_RE.split(text) if c.strip()]
    if len(cells) == 1:
        return _group_tokens(cells[0])

    match = _LEADING_NUMBER_RE.match(cells[0])
    if match and not is_numeric_cell(cells[0]):
        cells = [match.group(1), cells[0][match.end() :].strip(), *cells[1:]]
    return cells


def is_valid_student_name(name: str | None) -> bool:
    """Check that a candidate looks like a person's name.

    Requires at least two letters, and rejects pure numbers and header
    or summary vocabulary.
    """
    if not name:
        return False
    stripped = name.strip()
    if len(stripped) < 2 or count_letters(stripped) < 2:
        return False
    if is_numeric_cell(stripped):
        return False
    return not is_vocabulary_word(stripped)


def find_name_cell(cells: list[str], name_index: int | None = None) -> int | None:
    """Index of the cell holding the student name.

    The schema's name column wins when it holds a valid name; otherwise
    the longest valid non-numeric cell is chosen.
    """
    if name_index is not None and 0 <= name_index < len(cells):
        if is_valid_student_name(cells[name_index]):
            return name_index

    best: int | None = None
    for i, cell in enumerate(cells):
        if not is_valid_student_name(cell):
            continue
        if best is None or len(cell.strip()) > len(cells[best].strip()):
            best = i
    return best


def extract_student_name(cells: list[str], name_index: int | None = None) -> str | None:
    """Return the student name among ``cells``, if any."""
    index = find_name_cell(cells, name_index)
    if index is None:
        return None
    return _LEADING_NUMBER_RE.sub("", cells[index].strip())


def emergency_name_extraction(row: str) -> str | None:
    """Pick the longest run of letters in a raw row.

    Used when no cell qualifies as a name, e.g. when OCR merged the
    name with neighbouring marks.
    """
    runs = [
        " ".join(run.split())
        for run in _NAME_RUN_RE.findall(normalize_digits(row))
    ]
    candidates = [r for r in runs if is_valid_student_name(r)]
    return max(candidates, key=len) if candidates else None
