"""Tests for fuzzy name matching and result fusion."""

import pytest
from conftest import make_student

from gradesheet_ocr.extraction.fusion import (
    fuse_results,
    match_student,
    name_similarity,
    rank_results,
)
from gradesheet_ocr.extraction.models import DetectedMarkTypes, ExtractionResult, MarkType


def _result(
    students: list, confidence: float, strategy: str, priority: int = 1, **detected: bool
) -> ExtractionResult:
    return ExtractionResult(
        students=students,
        detected=DetectedMarkTypes(**detected),
        confidence=confidence,
        strategy=strategy,
        priority=priority,
    )


class TestNameSimilarity:
    """Tests for normalized edit-distance similarity."""

    def test_identical_after_normalization(self) -> None:
        assert name_similarity("أحمد", "احمد") == 1.0
        assert name_similarity("Ahmed  Ali", "ahmed ali") == 1.0

    def test_threshold_boundary_accepted(self) -> None:
        # 20 characters, 3 substitutions
        a, b = "abcdefghijklmnopqrst", "abcdefghijklmnopqzzz"
        assert name_similarity(a, b) == pytest.approx(0.85)
        assert match_student(a, [make_student(1, b)]) == 0

    def test_below_threshold_rejected(self) -> None:
        # 25 characters, 4 substitutions
        a, b = "abcdefghijklmnopqrstuvwxy", "abcdefghijklmnopqrstuzzzz"
        assert name_similarity(a, b) == pytest.approx(0.84)
        assert match_student(a, [make_student(1, b)]) is None

    def test_exact_match_preferred(self) -> None:
        candidates = [make_student(1, "Ahmed Alami"), make_student(2, "Ahmed Ali")]
        assert match_student("ahmed ali", candidates) == 1

    def test_empty_names(self) -> None:
        assert name_similarity("", "") == 1.0
        assert name_similarity("", "Sara") == 0.0


class TestFuseResults:
    """Tests for multi-result fusion."""

    def test_fills_gaps_from_other_strategy(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", exam1=True)
        b = _result([make_student(1, "Ahmed", exam2=12.0)], 0.8, "b", exam2=True)
        fused = fuse_results([a, b])
        assert len(fused.students) == 1
        assert fused.students[0].marks[MarkType.EXAM1] == 15.0
        assert fused.students[0].marks[MarkType.EXAM2] == 12.0
        assert fused.detected.active() == [MarkType.EXAM1, MarkType.EXAM2]

    def test_never_overwrites_present_values(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", exam1=True)
        b = _result([make_student(1, "Ahmed", exam1=11.0)], 0.5, "b", exam1=True)
        fused = fuse_results([a, b])
        assert fused.students[0].marks[MarkType.EXAM1] == 15.0

    def test_unmatched_students_appended(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", exam1=True)
        b = _result([make_student(1, "Sara", exam1=11.0)], 0.5, "b", exam1=True)
        fused = fuse_results([a, b])
        assert [(s.number, s.name) for s in fused.students] == [(1, "Ahmed"), (2, "Sara")]

    def test_filled_marks_keep_uncertainty(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", exam1=True)
        b = _result(
            [make_student(1, "Ahmed", uncertain={"exam2": True}, exam2=12.0)],
            0.5,
            "b",
            exam2=True,
        )
        fused = fuse_results([a, b])
        assert fused.students[0].is_uncertain("exam2")

    def test_priority_weighted_confidence(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", priority=1)
        b = _result([make_student(1, "Sara", exam1=11.0)], 0.6, "b", priority=2)
        fused = fuse_results([a, b])
        assert fused.confidence == pytest.approx(0.8)
        assert fused.strategy == "fused(a+b)"
        assert fused.priority == 1

    def test_base_not_mutated(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "a", exam1=True)
        b = _result([make_student(1, "Ahmed", exam2=12.0)], 0.8, "b", exam2=True)
        fuse_results([a, b])
        assert a.students[0].marks[MarkType.EXAM2] is None

    def test_identical_results_short_circuit(self) -> None:
        a = _result([make_student(1, "Ahmed", exam1=15.0)], 0.7, "a", exam1=True)
        b = _result([make_student(1, "Ahmed", exam1=15.0)], 0.9, "b", exam1=True)
        assert fuse_results([a, b]) is b

    def test_single_result(self) -> None:
        a = _result([], 0.5, "a")
        assert fuse_results([a]) is a

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            fuse_results([])


class TestRankResults:
    """Tests for base selection order."""

    def test_larger_result_wins_close_confidence(self) -> None:
        small = _result([make_student(i, f"S{i}x") for i in range(1, 4)], 0.9, "small")
        large = _result([make_student(i, f"L{i}x") for i in range(1, 6)], 0.85, "large")
        assert [r.strategy for r in rank_results([small, large])] == ["large", "small"]

    def test_confidence_wins_when_far_apart(self) -> None:
        small = _result([make_student(1, "Ahmed")], 0.95, "small")
        large = _result([make_student(i, f"L{i}x") for i in range(1, 6)], 0.5, "large")
        assert [r.strategy for r in rank_results([small, large])] == ["small", "large"]
