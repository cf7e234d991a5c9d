"""Confidence scoring of a single extraction result.

The score blends recognizer confidence, how plausible the recovered
table looks, and the quality of the source image.
"""

from .models import DetectedMarkTypes, MarkType, Student

OCR_WEIGHT = 0.4
STRUCTURE_WEIGHT = 0.4
IMAGE_WEIGHT = 0.2
DEFAULT_IMAGE_QUALITY = 0.7

PLAUSIBLE_COUNT = (5, 50)


def is_sequential(students: list[Student]) -> bool:
    """True when student numbers run 1, 2, 3... without gaps."""
    return all(s.number == i for i, s in enumerate(students, 1))


def structure_score(students: list[Student], detected: DetectedMarkTypes) -> float:
    """Plausibility of an extracted table in [0, 1].

    Components: plausible class size (0.2), share of names longer than
    two characters (0.3), mark fill ratio over detected columns (0.3),
    sequential numbering (0.1), and number of detected types (0.1).
    """
    if not students:
        return 0.0

    score = 0.0
    low, high = PLAUSIBLE_COUNT
    if low <= len(students) <= high:
        score += 0.2

    valid_names = sum(1 for s in students if len(s.name.strip()) > 2)
    score += 0.3 * valid_names / len(students)

    columns = detected.active() or list(MarkType)
    filled = sum(1 for s in students for t in columns if s.mark(t) is not None)
    score += 0.3 * min(1.0, filled / (len(students) * len(columns)))

    if is_sequential(students):
        score += 0.1
    score += 0.1 * detected.count / len(MarkType)
    return min(1.0, score)


def score_result(
    students: list[Student],
    detected: DetectedMarkTypes,
    token_confidence: float,
    image_quality: float | None = None,
) -> float:
    """Overall confidence of one extraction result.

    Args:
        students: Extracted students.
        detected: Detected mark types.
        token_confidence: Mean recognizer confidence in [0, 1].
        image_quality: Overall image quality score; a neutral default
            is used when unknown.

    Returns:
        Confidence in [0, 1].
    """
    quality = DEFAULT_IMAGE_QUALITY if image_quality is None else image_quality
    score = (
        OCR_WEIGHT * token_confidence
        + STRUCTURE_WEIGHT * structure_score(students, detected)
        + IMAGE_WEIGHT * quality
    )
    return max(0.0, min(1.0, score))
