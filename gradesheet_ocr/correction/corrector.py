"""Domain-aware correction of fused gradesheet results.

Names are cleaned with the rule table and optionally snapped to a class
roster. Marks are checked column by column against the column's
distribution; outliers are repaired only when a plausible recognition
error explains them, and every repair is flagged for review.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from gradesheet_ocr.extraction.fusion import name_similarity
from gradesheet_ocr.extraction.marks import MAX_MARK, MIN_MARK
from gradesheet_ocr.extraction.models import DetectedMarkTypes, MarkType, Student
from gradesheet_ocr.utils.arabic import normalize_name
from gradesheet_ocr.utils.config import CorrectionConfig
from gradesheet_ocr.utils.logger import get_logger

from .name_rules import NameRule, apply_name_rules, load_name_rules

logger = get_logger(__name__)

RULE_CONFIDENCE = 0.9
DECIMAL_SHIFT_CONFIDENCE = 0.8
DIGIT_DELTA_CONFIDENCE = 0.6


@dataclass
class Correction:
    """A single change applied to a name or a mark."""

    kind: str
    student_number: int
    field: str
    original: Any
    corrected: Any
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "student_number": self.student_number,
            "field": self.field,
            "original": self.original,
            "corrected": self.corrected,
            "confidence": round(self.confidence, 3),
        }


@dataclass
class CorrectionContext:
    """Optional knowledge about the class being extracted."""

    reference_names: list[str] = field(default_factory=list)
    expected_count: int | None = None


@dataclass
class CorrectionOutcome:
    """Corrected students plus the audit trail of what changed."""

    students: list[Student]
    detected: DetectedMarkTypes
    corrections: list[Correction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def repair_outlier(
    value: float, mean: float, std: float, deltas: list[float]
) -> tuple[float, str] | None:
    """Find a plausible recognition error that explains an outlier.

    A decimal shift (a lost or spurious decimal point) is tried first,
    then digit-confusion deltas in order.

    Args:
        value: The outlying mark.
        mean: Column mean.
        std: Column population standard deviation (non-zero).
        deltas: Digit-confusion offsets to try.

    Returns:
        ``(repaired_value, kind)`` or ``None`` when nothing helps.
    """
    distance = abs(value - mean)
    shifted = round(value * 10 if value < mean else value / 10, 2)
    if MIN_MARK <= shifted <= MAX_MARK and abs(shifted - mean) < distance:
        return shifted, "decimal_shift"

    z = distance / std
    for delta in deltas:
        candidate = round(value + delta, 2)
        if MIN_MARK <= candidate <= MAX_MARK and abs(candidate - mean) / std < z:
            return candidate, "digit_confusion"
    return None


class IntelligentTextCorrector:
    """Correct names and marks of an extracted class list.

    Args:
        config: Correction thresholds; defaults are used when omitted.
        rules: Name rule table; loaded from ``config.rules_path`` when
            omitted.
    """

    def __init__(
        self,
        config: CorrectionConfig | None = None,
        rules: list[NameRule] | None = None,
    ) -> None:
        self.config = config or CorrectionConfig()
        self.rules = rules if rules is not None else load_name_rules(
            Path(self.config.rules_path)
        )

    def correct(
        self,
        students: list[Student],
        detected: DetectedMarkTypes,
        context: CorrectionContext | None = None,
    ) -> CorrectionOutcome:
        """Correct a fused result.

        Args:
            students: Fused students; they are copied, never mutated.
            detected: Detected mark types of the fused result.
            context: Optional roster and expected class size.

        Returns:
            Corrected students, possibly extended detection, the list of
            corrections and consistency warnings.
        """
        context = context or CorrectionContext()
        students = [s.copy() for s in students]
        corrections: list[Correction] = []
        warnings: list[str] = []

        references = [
            (ref, self.match_key(ref)) for ref in context.reference_names if ref.strip()
        ]
        for student in students:
            corrections.extend(self._correct_student_name(student, references))

        for mark_type in MarkType:
            corrections.extend(self._correct_column(students, mark_type, warnings))

        detected = self.redetect(students, detected, warnings)
        warnings.extend(self.check_consistency(students, detected, context))

        logger.info(
            "Correction applied %d changes with %d warnings",
            len(corrections),
            len(warnings),
        )
        return CorrectionOutcome(students, detected, corrections, warnings)

    def correct_name(self, name: str) -> str:
        """Clean a name with the rule table; the input is kept if nothing survives."""
        cleaned = apply_name_rules(name, self.rules)
        return cleaned or name.strip()

    def match_key(self, name: str) -> str:
        """Fold a cleaned name for roster comparison."""
        return normalize_name(apply_name_rules(name, self.rules))

    def best_reference(
        self, name: str, references: list[tuple[str, str]]
    ) -> tuple[str, float] | None:
        """Closest roster name at or above the reference threshold."""
        key = self.match_key(name)
        best: tuple[str, float] | None = None
        for reference, reference_key in references:
            score = name_similarity(key, reference_key)
            if score >= self.config.reference_match_threshold and (
                best is None or score > best[1]
            ):
                best = (reference, score)
        return best

    def _correct_student_name(
        self, student: Student, references: list[tuple[str, str]]
    ) -> list[Correction]:
        changes: list[Correction] = []
        original = student.name
        cleaned = self.correct_name(original)
        if cleaned != original:
            changes.append(
                Correction("name_rule", student.number, "name", original, cleaned, RULE_CONFIDENCE)
            )
            student.name = cleaned

        if references:
            match = self.best_reference(student.name, references)
            if match is not None and match[0] != student.name:
                reference, score = match
                changes.append(
                    Correction(
                        "reference_match", student.number, "name", student.name, reference, score
                    )
                )
                logger.debug("Matched '%s' to roster name '%s' (%.2f)", student.name, reference, score)
                student.name = reference
        return changes

    def _correct_column(
        self, students: list[Student], mark_type: MarkType, warnings: list[str]
    ) -> list[Correction]:
        present = [s for s in students if s.mark(mark_type) is not None]
        if len(present) < self.config.min_column_values:
            return []

        values = np.array([s.mark(mark_type) for s in present], dtype=float)
        mean = float(values.mean())
        std = float(values.std())
        if std == 0.0:
            return []

        changes: list[Correction] = []
        for student in present:
            value = float(student.mark(mark_type))
            z = (value - mean) / std
            if abs(z) <= self.config.outlier_z_threshold:
                continue

            repair = repair_outlier(value, mean, std, self.config.digit_deltas)
            if repair is None:
                student.flag(mark_type.value)
                warnings.append(
                    f"Student {student.number} ({student.name}): {mark_type.value} "
                    f"{value:g} is unusual for this column (z={z:.1f}), left unchanged"
                )
                continue

            repaired, kind = repair
            student.marks[mark_type] = repaired
            student.flag(mark_type.value)
            confidence = (
                DECIMAL_SHIFT_CONFIDENCE if kind == "decimal_shift" else DIGIT_DELTA_CONFIDENCE
            )
            changes.append(
                Correction(kind, student.number, mark_type.value, value, repaired, confidence)
            )
            warnings.append(
                f"Student {student.number} ({student.name}): {mark_type.value} "
                f"{value:g} corrected to {repaired:g} ({kind.replace('_', ' ')})"
            )
        return changes

    def redetect(
        self,
        students: list[Student],
        detected: DetectedMarkTypes,
        warnings: list[str],
    ) -> DetectedMarkTypes:
        """Mark a type detected when enough students carry a value for it.

        Only ever adds flags.
        """
        result = DetectedMarkTypes().merge(detected)
        if not students:
            return result
        for mark_type in MarkType:
            if result[mark_type]:
                continue
            filled = sum(1 for s in students if s.mark(mark_type) is not None)
            if filled / len(students) >= self.config.redetect_ratio:
                result[mark_type] = True
                warnings.append(
                    f"{mark_type.value} re-detected from data ({filled}/{len(students)} students)"
                )
        return result

    def check_consistency(
        self,
        students: list[Student],
        detected: DetectedMarkTypes,
        context: CorrectionContext | None = None,
    ) -> list[str]:
        """Non-fatal plausibility checks over the whole class.

        Args:
            students: Corrected students.
            detected: Detected mark types.
            context: Optional expected class size.

        Returns:
            Human readable warnings.
        """
        warnings: list[str] = []
        context = context or CorrectionContext()

        if context.expected_count is not None:
            difference = abs(len(students) - context.expected_count)
            if difference > self.config.expected_count_tolerance:
                warnings.append(
                    f"Found {len(students)} students, expected about {context.expected_count}"
                )

        seen: dict[str, int] = {}
        for student in students:
            key = normalize_name(student.name)
            if key and key in seen:
                warnings.append(
                    f"Duplicate name '{student.name}' (students {seen[key]} and {student.number})"
                )
            elif key:
                seen[key] = student.number

        for mark_type in MarkType:
            values = [s.mark(mark_type) for s in students if s.mark(mark_type) is not None]
            if len(values) < self.config.min_column_values:
                continue
            column = np.array(values, dtype=float)
            mean, std = float(column.mean()), float(column.std())
            if mean > 18 or mean < 5:
                warnings.append(f"{mark_type.value} average {mean:.1f} looks implausible")
            if std > 8:
                warnings.append(f"{mark_type.value} spread {std:.1f} is unusually wide")

        if students and detected.count > 1:
            sparse = sum(1 for s in students if s.mark_count <= 1)
            if sparse / len(students) > 0.5:
                warnings.append(
                    f"{sparse} of {len(students)} students have at most one mark"
                )

        empty = [s.number for s in students if s.mark_count == 0]
        if empty:
            warnings.append(
                "Students without any mark: " + ", ".join(str(n) for n in empty)
            )

        numbers = sorted(s.number for s in students)
        missing = sorted(set(range(1, numbers[-1] + 1)) - set(numbers)) if numbers else []
        if missing:
            warnings.append(
                "Numbering gaps at: " + ", ".join(str(n) for n in missing)
            )
        return warnings
