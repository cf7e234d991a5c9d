"""Tests for acceptance thresholds adapted to image quality."""

import pytest

from gradesheet_ocr.pipeline.thresholds import (
    MAX_THRESHOLD,
    MIN_THRESHOLD,
    adapt_thresholds,
    adjustment_factor,
    image_quality_score,
)
from gradesheet_ocr.preprocessing.pipeline import PreprocessedImage
from gradesheet_ocr.preprocessing.quality import QualityMetrics
from gradesheet_ocr.utils.config import PassConfig, StrategyConfig


def _metrics(overall: float, resolution: int = 800) -> QualityMetrics:
    return QualityMetrics(0.5, 0.5, 0.5, 0.1, 0.0, resolution, overall)


class TestAdjustmentFactor:
    """Tests for the threshold multiplier."""

    def test_clean_printed_sheet(self) -> None:
        factor, reasons = adjustment_factor(1.0, "printed")
        assert factor == pytest.approx(0.96)
        assert reasons == []

    def test_poor_handwritten_sheet(self) -> None:
        factor, reasons = adjustment_factor(0.4, "handwritten")
        assert factor == pytest.approx(0.68 * 0.8 * 0.7)
        assert reasons == ["low image quality", "handwritten document"]

    def test_lower_quality_relaxes_more(self) -> None:
        good, _ = adjustment_factor(0.9, "marks_sheet")
        fair, _ = adjustment_factor(0.6, "marks_sheet")
        assert fair < good <= 1.0

    def test_unknown_document_type_uses_marks_sheet(self) -> None:
        assert adjustment_factor(0.7, "other") == adjustment_factor(0.7, "marks_sheet")


class TestAdaptThresholds:
    """Tests for adapting pass and strategy thresholds."""

    def test_pass_first_then_strategies(self) -> None:
        adjustments = adapt_thresholds(
            PassConfig(name="standard", min_confidence=0.5, document_type="printed"),
            [StrategyConfig(name="a", min_confidence=0.8), StrategyConfig(name="b")],
            1.0,
        )
        assert [a.target for a in adjustments] == ["pass", "a", "b"]
        assert adjustments[0].adjusted == pytest.approx(0.48)
        assert adjustments[1].adjusted == pytest.approx(0.768)
        assert adjustments[1].original == 0.8

    def test_never_raises_a_threshold(self) -> None:
        adjustments = adapt_thresholds(
            PassConfig(name="p", min_confidence=0.99, document_type="printed"),
            [StrategyConfig(name="low", min_confidence=0.2)],
            1.0,
        )
        assert adjustments[0].adjusted == MAX_THRESHOLD
        # already under the floor, kept as configured
        assert adjustments[1].adjusted == 0.2

    def test_floor(self) -> None:
        adjustments = adapt_thresholds(
            PassConfig(name="p", min_confidence=0.6, document_type="handwritten"),
            [],
            0.1,
        )
        assert adjustments[0].adjusted == MIN_THRESHOLD
        assert "handwritten document" in adjustments[0].reasons

    def test_serializes(self) -> None:
        data = adapt_thresholds(PassConfig(name="p"), [], 0.8)[0].to_dict()
        assert set(data) == {"target", "original", "adjusted", "factor", "reasons"}
        assert data["original"] == 0.6


class TestImageQualityScore:
    """Tests for picking the quality the strategies see."""

    def test_prefers_quality_after_enhancement(self) -> None:
        prepared = PreprocessedImage(b"", _metrics(0.4), quality_after=_metrics(0.9))
        assert image_quality_score(prepared, 0.7) == 0.9

    def test_unmeasured_image_uses_default(self) -> None:
        prepared = PreprocessedImage(b"", QualityMetrics.neutral())
        assert image_quality_score(prepared, 0.7) == 0.7
