"""Header and summary vocabulary for gradesheet tables.

Column titles are matched after folding Arabic letter variants,
removing diacritics and converting digits, so the patterns below are
written against that normalized form (ا for أ/إ/آ, ه for ة, ي for ى).
"""

import re

from gradesheet_ocr.utils.arabic import normalize_digits, strip_diacritics, unify_letters

from .models import ColumnKind, MarkType

_ORDINALS: dict[int, str] = {
    1: r"1|الاول|اول|premier|1er|i\b",
    2: r"2|الثاني|ثاني|second|deuxieme|deuxième|2eme|2ème|ii\b",
    3: r"3|الثالث|ثالث|troisieme|troisième|3eme|3ème|iii\b",
    4: r"4|الرابع|رابع|quatrieme|quatrième|4eme|4ème|iv\b",
}


def _exam_pattern(n: int) -> str:
    ordinal = _ORDINALS[n]
    return (
        rf"\b(?:ال)?فرض\s*(?:رقم\s*)?(?:{ordinal})(?!\d)"
        rf"|\b(?:exam|test|quiz)\s*#?\s*(?:{ordinal})(?!\d)"
        rf"|\b(?:devoir|contr[oô]le|dc|ds)\s*(?:n°|no)?\s*(?:{ordinal})(?!\d)"
    )


MARK_TYPE_PATTERNS: list[tuple[MarkType, re.Pattern[str]]] = [
    (MarkType.EXAM1, re.compile(_exam_pattern(1), re.IGNORECASE)),
    (MarkType.EXAM2, re.compile(_exam_pattern(2), re.IGNORECASE)),
    (MarkType.EXAM3, re.compile(_exam_pattern(3), re.IGNORECASE)),
    (MarkType.EXAM4, re.compile(_exam_pattern(4), re.IGNORECASE)),
    (
        MarkType.ACTIVITIES,
        re.compile(
            r"\b(?:الانشطه|النشاط|انشطه|المراقبه\s*المستمره|مراقبه\s*مستمره)\b"
            r"|\bactivit(?:y|ies|é|e|és|es)\b",
            re.IGNORECASE,
        ),
    ),
]

NAME_PATTERN = re.compile(
    r"\b(?:الاسم\s*الكامل|الاسم\s*و\s*النسب|الاسم|اسم|التلميذ|التلاميذ|الطالب)\b"
    r"|\bfull\s*name\b|\bname\b|\bnom\b|\bstudent\b|\b[ée]l[èe]ve\b",
    re.IGNORECASE,
)

NUMBER_PATTERN = re.compile(
    r"\b(?:الرقم|رقم|ر\s*\.\s*ت|ر\s*ت)\b"
    r"|\bn°|\bnum[ée]ro\b|\bnumber\b|\bno\b\.?|#",
    re.IGNORECASE,
)

SUMMARY_KEYWORDS: tuple[str, ...] = (
    "المجموع",
    "المعدل",
    "الاجمالي",
    "اجمالي",
    "total",
    "average",
    "sum",
    "moyenne",
)

_SUMMARY_TOKENS = frozenset(SUMMARY_KEYWORDS) | frozenset(
    "و" + k for k in SUMMARY_KEYWORDS if not k.isascii()
)

SEPARATOR_PATTERN = re.compile(r"\||\t|\s{2,}|(?<!\d)،|،(?!\d)")

_ALL_TERMS = re.compile(
    "|".join(
        f"(?:{p.pattern})"
        for p in [*(p for _, p in MARK_TYPE_PATTERNS), NAME_PATTERN, NUMBER_PATTERN]
    ),
    re.IGNORECASE,
)
_TOKEN_SPLIT = re.compile(r"[\s:;,.()\[\]|]+")
_NON_TERM_CHARS = re.compile(r"[\s\d|:.\-_/]+")


def normalize_title(text: str) -> str:
    """Fold a header cell into the form the vocabulary is written for."""
    return unify_letters(strip_diacritics(normalize_digits(text))).strip().lower()


def detect_mark_type(title: str) -> MarkType | None:
    """Return the mark type a column title refers to, if any."""
    normalized = normalize_title(title)
    for mark_type, pattern in MARK_TYPE_PATTERNS:
        if pattern.search(normalized):
            return mark_type
    return None


def classify_column(title: str) -> tuple[ColumnKind, MarkType | None]:
    """Classify a header cell as name, number, mark or other."""
    mark_type = detect_mark_type(title)
    if mark_type is not None:
        return ColumnKind.MARK, mark_type
    normalized = normalize_title(title)
    if NAME_PATTERN.search(normalized):
        return ColumnKind.NAME, None
    if NUMBER_PATTERN.search(normalized):
        return ColumnKind.NUMBER, None
    return ColumnKind.OTHER, None


def has_mark_vocabulary(line: str) -> bool:
    normalized = normalize_title(line)
    return any(p.search(normalized) for _, p in MARK_TYPE_PATTERNS)


def has_column_vocabulary(line: str) -> bool:
    normalized = normalize_title(line)
    return bool(NAME_PATTERN.search(normalized) or NUMBER_PATTERN.search(normalized))


def find_column_terms(line: str) -> list[str]:
    """Vocabulary terms of a single-spaced header line, in reading order."""
    return [m.group(0) for m in _ALL_TERMS.finditer(normalize_title(line))]


def is_summary_row(line: str) -> bool:
    """Detect class totals/averages footer rows."""
    tokens = _TOKEN_SPLIT.split(normalize_title(line))
    return any(token in _SUMMARY_TOKENS for token in tokens if token)


def is_vocabulary_word(text: str) -> bool:
    """True when ``text`` holds only header or summary terms (not a name)."""
    normalized = normalize_title(text)
    if not normalized:
        return False
    if is_summary_row(normalized):
        return True
    return not _NON_TERM_CHARS.sub("", _ALL_TERMS.sub("", normalized))
