"""Arabic text helpers shared by the OCR and extraction layers."""

import re
import unicodedata

ARABIC_LETTER_RE = re.compile(r"[\u0621-\u063A\u0641-\u064A\u0671-\u06D3\u06FA-\u06FF]")
LATIN_LETTER_RE = re.compile(r"[A-Za-z\u00C0-\u024F]")
LETTER_RE = re.compile(
    r"[\u0621-\u063A\u0641-\u064A\u0671-\u06D3\u06FA-\u06FFA-Za-z\u00C0-\u024F]"
)
DIACRITICS_RE = re.compile(r"[\u0610-\u061A\u064B-\u065F\u0670\u06D6-\u06ED]")
INVISIBLE_RE = re.compile(r"[\u200B-\u200F\u202A-\u202E\u2066-\u2069\uFEFF]")
TATWEEL = "\u0640"

_DIGIT_TABLE = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")
_LETTER_TABLE = str.maketrans(
    {"أ": "ا", "إ": "ا", "آ": "ا", "ٱ": "ا", "ة": "ه", "ى": "ي", "ؤ": "و", "ئ": "ي"}
)
_NON_NAME_RE = re.compile(r"[^\u0621-\u064A\u0671-\u06D3\u06FA-\u06FFa-z0-9\s]")
_SPACES_RE = re.compile(r"\s+")


def normalize_digits(text: str) -> str:
    """Replace Arabic-Indic and Persian digits with ASCII digits."""
    return text.translate(_DIGIT_TABLE)


def strip_diacritics(text: str) -> str:
    """Remove harakat, Quranic marks, tatweel and invisible direction marks."""
    text = INVISIBLE_RE.sub("", text).replace(TATWEEL, "")
    return DIACRITICS_RE.sub("", text)


def unify_letters(text: str) -> str:
    """Fold alef, teh marbuta, alef maksura and hamza-seat variants."""
    return text.translate(_LETTER_TABLE)


def normalize_name(name: str) -> str:
    """Comparison key for student names.

    Two names that differ only in diacritics, letter variants, spacing,
    punctuation or case map to the same key.
    """
    if not name:
        return ""
    text = unicodedata.normalize("NFKC", name)
    text = unify_letters(strip_diacritics(text)).lower()
    text = _NON_NAME_RE.sub(" ", normalize_digits(text))
    return _SPACES_RE.sub(" ", text).strip()


def contains_arabic(text: str) -> bool:
    return bool(ARABIC_LETTER_RE.search(text))


def count_letters(text: str) -> int:
    return len(LETTER_RE.findall(text))


def is_mostly_arabic(text: str) -> bool:
    """True when Arabic letters outnumber Latin letters."""
    return len(ARABIC_LETTER_RE.findall(text)) > len(LATIN_LETTER_RE.findall(text))
