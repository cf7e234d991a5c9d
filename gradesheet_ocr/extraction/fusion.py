"""Fusion of independent extraction results.

The most trustworthy result is the base. Students from the other
results are matched to it by name, fill only the base's missing marks,
and are appended when no match exists.
"""

import functools

from rapidfuzz.distance import Levenshtein

from gradesheet_ocr.utils.arabic import normalize_name
from gradesheet_ocr.utils.logger import get_logger

from .models import DetectedMarkTypes, ExtractionResult, Student

logger = get_logger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85
_CONFIDENCE_TIE = 0.1


def name_similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity of two names in [0, 1].

    ``(max_len - levenshtein) / max_len`` over normalized names.
    """
    left, right = normalize_name(a), normalize_name(b)
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0 if left == right else 0.0
    return (longest - Levenshtein.distance(left, right)) / longest


def match_student(
    name: str,
    candidates: list[Student],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> int | None:
    """Index of the student in ``candidates`` that ``name`` refers to.

    Exact normalized equality wins; otherwise the most similar name at
    or above ``threshold``.
    """
    key = normalize_name(name)
    for i, candidate in enumerate(candidates):
        if normalize_name(candidate.name) == key:
            return i

    best_index: int | None = None
    best_score = threshold
    for i, candidate in enumerate(candidates):
        score = name_similarity(name, candidate.name)
        if score >= best_score and (best_index is None or score > best_score):
            best_index, best_score = i, score
    return best_index


def _compare(a: ExtractionResult, b: ExtractionResult) -> int:
    """Order results best first: confidence, then size when close."""
    if abs(a.confidence - b.confidence) <= _CONFIDENCE_TIE:
        if len(a.students) != len(b.students):
            return len(b.students) - len(a.students)
    if a.confidence != b.confidence:
        return -1 if a.confidence > b.confidence else 1
    return 0


def rank_results(results: list[ExtractionResult]) -> list[ExtractionResult]:
    """Sort results from most to least trustworthy."""
    return sorted(results, key=functools.cmp_to_key(_compare))


def _fill_gaps(base: Student, candidate: Student) -> int:
    filled = 0
    for mark_type, value in candidate.marks.items():
        if base.marks.get(mark_type) is None and value is not None:
            base.marks[mark_type] = value
            base.flag(mark_type.value, candidate.is_uncertain(mark_type.value))
            filled += 1
    return filled


def fuse_results(
    results: list[ExtractionResult],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> ExtractionResult:
    """Reconcile several extraction results into one.

    Args:
        results: Results from different strategies or passes.
        similarity_threshold: Minimum fuzzy name similarity for a match.

    Returns:
        The fused result. Present values of the base are never
        overwritten; confidence is the priority-weighted mean and
        detected types are OR-ed across results.

    Raises:
        ValueError: If ``results`` is empty.
    """
    if not results:
        raise ValueError("No extraction results to fuse")
    if len(results) == 1:
        return results[0]

    ranked = rank_results(results)
    if len({r.composition() for r in results}) == 1:
        logger.info("All %d results identical, keeping %s", len(results), ranked[0].strategy)
        return ranked[0]

    base, others = ranked[0], ranked[1:]
    students = [s.copy() for s in base.students]
    detected = DetectedMarkTypes().merge(base.detected)
    filled = appended = 0

    for other in others:
        detected = detected.merge(other.detected)
        for candidate in other.students:
            index = match_student(candidate.name, students, similarity_threshold)
            if index is None:
                addition = candidate.copy()
                addition.number = len(students) + 1
                students.append(addition)
                appended += 1
            else:
                filled += _fill_gaps(students[index], candidate)

    weights = [1.0 / max(r.priority, 1) for r in ranked]
    confidence = sum(w * r.confidence for w, r in zip(weights, ranked)) / sum(weights)

    logger.info(
        "Fused %d results on base %s: %d marks filled, %d students appended",
        len(results),
        base.strategy,
        filled,
        appended,
    )
    return ExtractionResult(
        students=students,
        detected=detected,
        confidence=confidence,
        strategy="fused(" + "+".join(r.strategy for r in ranked) + ")",
        priority=min(r.priority for r in ranked),
        processing_time=max(r.processing_time for r in ranked),
        warnings=[w for r in ranked for w in r.warnings],
        raw_text=base.raw_text,
    )
