"""Acceptance thresholds adapted to image quality and document type.

Configured ``min_confidence`` values describe a clean printed sheet.
Poor photographs and handwriting score lower even when the extraction is
usable, so the thresholds a pass checks against are relaxed in
proportion to how unreliable the input is. Correction thresholds are
not touched here.
"""

from dataclasses import dataclass, field
from typing import Any

from gradesheet_ocr.preprocessing.pipeline import PreprocessedImage
from gradesheet_ocr.utils.config import PassConfig, StrategyConfig
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

MIN_THRESHOLD = 0.3
MAX_THRESHOLD = 0.95

DOCUMENT_COMPLEXITY = {
    "printed": 0.8,
    "marks_sheet": 0.6,
    "handwritten": 0.3,
}


@dataclass
class ThresholdAdjustment:
    """How one acceptance threshold was adapted for a pass."""

    target: str
    original: float
    adjusted: float
    factor: float
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "original": self.original,
            "adjusted": round(self.adjusted, 3),
            "factor": round(self.factor, 3),
            "reasons": self.reasons,
        }


def image_quality_score(prepared: PreprocessedImage, default: float) -> float:
    """Quality of the image the strategies actually see.

    Unmeasured images report zero resolution and get ``default``.
    """
    metrics = prepared.quality_after or prepared.quality
    return metrics.overall_score if metrics.resolution else default


def adjustment_factor(image_quality: float, document_type: str) -> tuple[float, list[str]]:
    """Multiplier applied to configured thresholds, with its reasons.

    Args:
        image_quality: Overall image quality in [0, 1].
        document_type: Document type of the pass.

    Returns:
        A factor in (0, 1] and the reasons for any extra relaxation.
    """
    complexity = DOCUMENT_COMPLEXITY.get(document_type, DOCUMENT_COMPLEXITY["marks_sheet"])
    reliability = image_quality * 0.6 + complexity * 0.4
    factor = 0.5 + reliability * 0.5
    reasons: list[str] = []
    if image_quality < 0.5:
        factor *= 0.8
        reasons.append("low image quality")
    if document_type == "handwritten":
        factor *= 0.7
        reasons.append("handwritten document")
    return factor, reasons


def _adjust(
    target: str, threshold: float, factor: float, reasons: list[str]
) -> ThresholdAdjustment:
    # relax only; a threshold configured below the floor is kept as is
    adjusted = min(threshold, MAX_THRESHOLD, max(MIN_THRESHOLD, threshold * factor))
    return ThresholdAdjustment(target, threshold, adjusted, factor, list(reasons))


def adapt_thresholds(
    pass_config: PassConfig,
    strategies: list[StrategyConfig],
    image_quality: float,
) -> list[ThresholdAdjustment]:
    """Adapt the pass threshold and every strategy threshold.

    Args:
        pass_config: The pass being run.
        strategies: Strategies run in this pass.
        image_quality: Overall quality of the preprocessed image.

    Returns:
        The pass adjustment first (target ``"pass"``), then one per
        strategy in the given order.
    """
    factor, reasons = adjustment_factor(image_quality, pass_config.document_type)
    adjustments = [_adjust("pass", pass_config.min_confidence, factor, reasons)]
    adjustments.extend(
        _adjust(s.name, s.min_confidence, factor, reasons) for s in strategies
    )
    logger.debug(
        "Pass %s thresholds scaled by %.2f (quality %.2f, %s)",
        pass_config.name,
        factor,
        image_quality,
        pass_config.document_type,
    )
    return adjustments
