"""Mark value normalization.

Turns raw OCR cell text into a mark on the 0-20 scale, repairing the
recurring recognition artifacts seen on handwritten gradesheets.
"""

import math
import re

from gradesheet_ocr.utils.arabic import normalize_digits

MIN_MARK = 0.0
MAX_MARK = 20.0

_SEPARATORS = str.maketrans({"،": ",", "٫": ".", "·": ".", "﹒": "."})
_LETTER_O_RE = re.compile(r"(?<=\d)[Oo]|[Oo](?=\d)")
_FIVE_DIGIT_ARTIFACT_RE = re.compile(r"(\d{2})\d00")
_FOUR_DIGIT_ARTIFACT_RE = re.compile(r"(\d)100")
_RATIO_RE = re.compile(r"(\d+(?:[.,]\d+)?)/(\d+(?:[.,]\d+)?)")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _in_range(value: float) -> float | None:
    if math.isnan(value) or not MIN_MARK <= value <= MAX_MARK:
        return None
    return round(value, 2)


def _to_float(text: str) -> float:
    return float(text.replace(",", "."))


def parse_mark_value(raw: str | float | int | None) -> float | None:
    """Parse an OCR cell into a mark in [0, 20].

    Handles localized digits and decimal separators, digit
    concatenation artifacts (``07100`` -> 7.0, ``15100`` -> 15.0,
    ``7100`` -> 7.0) and ``x/y`` ratios. A ratio over at most 20 is
    rescaled to 20; over a larger total the numerator is the mark.

    Args:
        raw: Cell text or an already numeric value.

    Returns:
        The mark rounded to 2 decimals, or ``None`` when the input is
        empty, not numeric, or outside [0, 20].
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _in_range(float(raw))

    text = normalize_digits(str(raw)).translate(_SEPARATORS)
    text = re.sub(r"\s+", "", text)
    if not text:
        return None
    text = _LETTER_O_RE.sub("0", text)

    match = _FIVE_DIGIT_ARTIFACT_RE.fullmatch(text)
    if match and text != "10000":
        value = int(match.group(1))
        if value <= MAX_MARK:
            return float(value)

    match = _FOUR_DIGIT_ARTIFACT_RE.fullmatch(text)
    if match:
        return float(match.group(1))

    match = _RATIO_RE.fullmatch(text)
    if match:
        numerator = _to_float(match.group(1))
        denominator = _to_float(match.group(2))
        if 0 < denominator <= MAX_MARK:
            scaled = numerator / denominator * MAX_MARK
            if MIN_MARK <= scaled <= MAX_MARK:
                return round(scaled, 2)
        text = match.group(1)

    match = _NUMBER_RE.search(text.replace(",", "."))
    if not match:
        return None
    return _in_range(float(match.group(0)))


def format_mark(value: float | None) -> str:
    """Format a mark with two decimals (empty string for ``None``)."""
    return "" if value is None else f"{value:.2f}"


def is_numeric_cell(text: str) -> bool:
    """True when a cell holds a number-like token and no letters."""
    cleaned = normalize_digits(text).translate(_SEPARATORS).strip()
    return bool(re.fullmatch(r"[\d.,/\-]*\d[\d.,/\-]*", cleaned))
