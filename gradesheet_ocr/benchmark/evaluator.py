"""Accuracy benchmarking of gradesheet extraction.

Compares extracted students against labeled ground truth sheets and
computes precision, recall, F1 and exact-match accuracy per mark type,
plus a label-free completeness heuristic.
"""

import csv
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gradesheet_ocr.extraction.fusion import DEFAULT_SIMILARITY_THRESHOLD, match_student
from gradesheet_ocr.extraction.marks import MAX_MARK, MIN_MARK, parse_mark_value
from gradesheet_ocr.extraction.models import DetectedMarkTypes, MarkType, Student
from gradesheet_ocr.utils.arabic import count_letters, normalize_name
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

NAME_FIELD = "name"


@dataclass
class FieldMetrics:
    """Precision, recall, F1, and accuracy metrics for a single field.

    Args:
        field_name: ``"name"`` or a mark type value.
    """

    field_name: str
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    exact_matches: int = 0
    total: int = 0

    @property
    def precision(self) -> float:
        """Fraction of predicted values that are correct."""
        denom = self.true_positives + self.false_positives
        if denom == 0:
            return 0.0
        return self.true_positives / denom

    @property
    def recall(self) -> float:
        """Fraction of expected values that were correctly predicted."""
        denom = self.true_positives + self.false_negatives
        if denom == 0:
            return 0.0
        return self.true_positives / denom

    @property
    def f1(self) -> float:
        """Harmonic mean of precision and recall."""
        if self.precision + self.recall == 0:
            return 0.0
        return 2 * (self.precision * self.recall) / (self.precision + self.recall)

    @property
    def accuracy(self) -> float:
        """Fraction of exact matches among compared values."""
        if self.total == 0:
            return 0.0
        return self.exact_matches / self.total


@dataclass
class BenchmarkResult:
    """Aggregated benchmark results across all sheets and fields.

    Args:
        total_sheets: Number of sheets in ground truth.
        successful_sheets: Number of sheets with predictions.
        overall_accuracy: Mean field-level accuracy.
        overall_f1: Mean field-level F1 score.
        field_metrics: Per-field metric details.
        avg_processing_time_ms: Average processing time in milliseconds.
        errors: List of error messages encountered.
    """

    total_sheets: int
    successful_sheets: int
    overall_accuracy: float
    overall_f1: float
    field_metrics: dict[str, FieldMetrics]
    avg_processing_time_ms: float = 0.0
    errors: list[str] = field(default_factory=list)


def compute_extraction_accuracy(
    students: list[Student], detected: DetectedMarkTypes
) -> int:
    """Label-free accuracy estimate as a percentage.

    Valid marks over the detected columns weigh 90%, names with letters
    weigh 10%. Without detected columns only names are considered.

    Args:
        students: Final students.
        detected: Detected mark types.

    Returns:
        Rounded percentage in [0, 100].
    """
    if not students:
        return 0

    names_ratio = sum(
        1 for s in students if len(s.name.strip()) >= 2 and count_letters(s.name) > 0
    ) / len(students)
    active = detected.active()
    if not active:
        return round(names_ratio * 100)

    valid = sum(
        1
        for s in students
        for t in active
        if s.mark(t) is not None and MIN_MARK <= s.mark(t) <= MAX_MARK
    )
    completeness = valid / (len(students) * len(active))
    weighted = 0.9 * completeness + 0.1 * names_ratio
    return round(max(0.0, min(1.0, weighted)) * 100)


class Evaluator:
    """Evaluates extracted students against ground truth labels.

    Students are paired by name with the same matcher fusion uses;
    marks are compared numerically.

    Args:
        mark_tolerance: Largest absolute difference still counted as a
            match.
        name_threshold: Fuzzy name similarity needed to pair students.
    """

    def __init__(
        self,
        mark_tolerance: float = 0.01,
        name_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.mark_tolerance = mark_tolerance
        self.name_threshold = name_threshold

    def evaluate(
        self,
        predictions: dict[str, list[Student]],
        ground_truth: dict[str, list[Student]],
    ) -> BenchmarkResult:
        """Compare predictions against ground truth and compute metrics.

        Args:
            predictions: Mapping of sheet filename to extracted students.
            ground_truth: Mapping of sheet filename to expected students.

        Returns:
            Aggregated benchmark results with per-field metrics.
        """
        field_metrics = {
            name: FieldMetrics(name) for name in [NAME_FIELD, *(t.value for t in MarkType)]
        }
        errors: list[str] = []
        missing_count = 0

        for filename, expected in ground_truth.items():
            if filename not in predictions:
                errors.append(f"Missing prediction for {filename}")
                missing_count += 1
                for student in expected:
                    self._count_missing(student, field_metrics)
                continue
            self._compare_sheet(predictions[filename], expected, field_metrics)

        measured = [m for m in field_metrics.values() if m.total > 0]
        return BenchmarkResult(
            total_sheets=len(ground_truth),
            successful_sheets=len(ground_truth) - missing_count,
            overall_accuracy=(
                sum(m.accuracy for m in measured) / len(measured) if measured else 0.0
            ),
            overall_f1=sum(m.f1 for m in measured) / len(measured) if measured else 0.0,
            field_metrics=field_metrics,
            errors=errors,
        )

    def _compare_sheet(
        self,
        predicted: list[Student],
        expected: list[Student],
        field_metrics: dict[str, FieldMetrics],
    ) -> None:
        remaining = list(predicted)
        for truth in expected:
            index = match_student(truth.name, remaining, self.name_threshold)
            if index is None:
                self._count_missing(truth, field_metrics)
                continue
            guess = remaining.pop(index)

            names = field_metrics[NAME_FIELD]
            names.total += 1
            names.true_positives += 1
            if normalize_name(guess.name) == normalize_name(truth.name):
                names.exact_matches += 1

            for mark_type in MarkType:
                self._compare_mark(
                    guess.mark(mark_type), truth.mark(mark_type), field_metrics[mark_type.value]
                )

        for extra in remaining:
            field_metrics[NAME_FIELD].total += 1
            field_metrics[NAME_FIELD].false_positives += 1
            for mark_type in MarkType:
                if extra.mark(mark_type) is not None:
                    field_metrics[mark_type.value].total += 1
                    field_metrics[mark_type.value].false_positives += 1

    def _compare_mark(
        self, predicted: float | None, expected: float | None, metrics: FieldMetrics
    ) -> None:
        if predicted is None and expected is None:
            return
        metrics.total += 1
        if predicted is None:
            metrics.false_negatives += 1
        elif expected is None:
            metrics.false_positives += 1
        elif abs(predicted - expected) <= self.mark_tolerance:
            metrics.true_positives += 1
            metrics.exact_matches += 1
        else:
            metrics.false_positives += 1

    @staticmethod
    def _count_missing(student: Student, field_metrics: dict[str, FieldMetrics]) -> None:
        field_metrics[NAME_FIELD].total += 1
        field_metrics[NAME_FIELD].false_negatives += 1
        for mark_type in MarkType:
            if student.mark(mark_type) is not None:
                field_metrics[mark_type.value].total += 1
                field_metrics[mark_type.value].false_negatives += 1

    def generate_report(
        self, result: BenchmarkResult, output_path: Path | None = None
    ) -> str:
        """Generate a human-readable benchmark report.

        Args:
            result: Benchmark results to format.
            output_path: Optional path to write the report file.

        Returns:
            Formatted report string.
        """
        lines = [
            "=" * 60,
            "GRADESHEET BENCHMARK",
            "=" * 60,
            f"Total Sheets:         {result.total_sheets}",
            f"Successful:           {result.successful_sheets}",
            f"Overall Accuracy:     {result.overall_accuracy:.2%}",
            f"Overall F1 Score:     {result.overall_f1:.3f}",
            f"Avg Processing Time:  {result.avg_processing_time_ms:.0f}ms",
            "",
            "Per-Field Metrics:",
            "-" * 60,
            f"{'Field':<14} {'Precision':>10} {'Recall':>10} {'F1':>10} {'Accuracy':>10}",
            "-" * 60,
        ]
        for name, metrics in result.field_metrics.items():
            if metrics.total == 0:
                continue
            lines.append(
                f"{name:<14} {metrics.precision:>10.2%} {metrics.recall:>10.2%} "
                f"{metrics.f1:>10.3f} {metrics.accuracy:>10.2%}"
            )
        lines.append("=" * 60)

        if result.errors:
            lines.append("")
            lines.append("Errors:")
            for error in result.errors:
                lines.append(f"  - {error}")

        report = "\n".join(lines)

        if output_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w", encoding="utf-8") as f:
                f.write(report)
            logger.info("Report written to %s", output_path)

        return report


def _student_from_label(number: int, entry: dict[str, Any]) -> Student:
    student = Student(number=int(entry.get("number") or number), name=str(entry.get("name", "")))
    marks = entry.get("marks") or {}
    for mark_type in MarkType:
        student.marks[mark_type] = parse_mark_value(marks.get(mark_type.value))
    return student


def load_ground_truth(path: Path) -> dict[str, list[Student]]:
    """Load labeled sheets from a JSON or CSV file.

    JSON format: ``{"sheet.jpg": [{"name": ..., "marks": {"exam1": 12}}]}``.
    CSV format: one row per student with ``filename``, ``name`` and one
    column per mark type.

    Args:
        path: Path to the ground truth file.

    Returns:
        Mapping of sheet filename to expected students.

    Raises:
        ValueError: If the file format is not supported.
    """
    if path.suffix == ".json":
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        return {
            filename: [_student_from_label(i, entry) for i, entry in enumerate(entries, 1)]
            for filename, entries in raw.items()
        }

    if path.suffix == ".csv":
        gt: dict[str, list[Student]] = {}
        with open(path, encoding="utf-8") as f:
            for row in csv.DictReader(f):
                sheet = gt.setdefault(row.pop("filename"), [])
                marks = {t.value: row.get(t.value) or None for t in MarkType}
                sheet.append(
                    _student_from_label(len(sheet) + 1, {"name": row.get("name", ""), "marks": marks})
                )
        return gt

    raise ValueError(f"Unsupported ground truth format: {path.suffix}")
