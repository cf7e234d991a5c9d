"""Assemble Student records from table sections or structured answers."""

import re
from dataclasses import dataclass, field
from typing import Any

from gradesheet_ocr.utils.arabic import normalize_name
from gradesheet_ocr.utils.logger import get_logger

from .marks import MAX_MARK, MIN_MARK, is_numeric_cell, parse_mark_value
from .models import DetectedMarkTypes, HeaderAnalysis, MarkType, Student, empty_marks
from .row_parser import (
    emergency_name_extraction,
    extract_student_name,
    find_name_cell,
    is_valid_student_name,
    parse_row_into_cells,
)
from .table_analyzer import TableSection

logger = get_logger(__name__)

_ORDINAL_CELL_RE = re.compile(r"\d{1,3}[.)\-]?")
_MARK_KEY_ALIASES: dict[str, MarkType] = {
    "exam1": MarkType.EXAM1,
    "exam2": MarkType.EXAM2,
    "exam3": MarkType.EXAM3,
    "exam4": MarkType.EXAM4,
    "fard1": MarkType.EXAM1,
    "fard2": MarkType.EXAM2,
    "fard3": MarkType.EXAM3,
    "fard4": MarkType.EXAM4,
    "activities": MarkType.ACTIVITIES,
    "activity": MarkType.ACTIVITIES,
    "activites": MarkType.ACTIVITIES,
}


@dataclass
class BuildOutcome:
    """Students built from one recognition result."""

    students: list[Student]
    detected: DetectedMarkTypes
    warnings: list[str] = field(default_factory=list)


def resolve_mark_key(key: str) -> MarkType | None:
    """Map ``exam1``/``fard1``/``hasFard1``-style keys to a mark type."""
    normalized = re.sub(r"[\s_\-]", "", str(key)).lower()
    if normalized.startswith("has"):
        normalized = normalized[3:]
    return _MARK_KEY_ALIASES.get(normalized)


def detect_populated(
    students: list[Student], candidates: set[MarkType]
) -> DetectedMarkTypes:
    """Detected types: candidate columns that hold at least one value."""
    detected = DetectedMarkTypes()
    for mark_type in candidates:
        detected[mark_type] = any(s.mark(mark_type) is not None for s in students)
    return detected


class StudentBuilder:
    """Build students with per-field uncertainty flags."""

    def build(self, sections: list[TableSection]) -> BuildOutcome:
        """Build students from analyzed table sections.

        Args:
            sections: Output of the table structure analyzer.

        Returns:
            Students numbered in reading order, detected mark types and
            build warnings.
        """
        students: list[Student] = []
        candidates: set[MarkType] = set()
        warnings: list[str] = []

        for section in sections:
            header = section.header
            if header is None:
                candidates.update(MarkType)
            elif header.column_mapping:
                candidates.update(header.column_mapping.values())
            else:
                warnings.append(
                    f"Header at line {header.line_index + 1} has no mark columns"
                )

            for row in section.rows:
                student = self.build_row(row, header, len(students) + 1)
                if student is not None:
                    students.append(student)

        if any(s.header is None for s in sections) and any(
            s.mark_count for s in students
        ):
            warnings.append("No header row found; marks were assigned by position")

        detected = detect_populated(students, candidates)
        logger.info(
            "Built %d students, detected mark types: %s",
            len(students),
            ", ".join(detected.active()) or "none",
        )
        return BuildOutcome(students, detected, warnings)

    def build_row(
        self, row: str, header: HeaderAnalysis | None, number: int
    ) -> Student | None:
        """Build one student from a body row.

        Args:
            row: Raw row text.
            header: Column schema of the section, if any.
            number: Sequential number to assign.

        Returns:
            The student, or ``None`` when the row holds no usable name.
        """
        cells = parse_row_into_cells(row)
        if not cells:
            return None

        uncertain: dict[str, bool] = {}
        name_index = find_name_cell(cells, header.name_index if header else None)
        if name_index is None:
            name = emergency_name_extraction(row)
            if name is None:
                return None
            uncertain["name"] = True
        else:
            name = extract_student_name(cells, name_index) or cells[name_index]

        marks = empty_marks()
        mapping = header.column_mapping if header else {}
        if mapping:
            aligned, offset = self._alignment(cells, header, name_index)
            for column, mark_type in mapping.items():
                index = column + offset
                if index == name_index or not 0 <= index < len(cells):
                    continue
                raw = cells[index]
                value = parse_mark_value(raw)
                marks[mark_type] = value
                if (value is not None and not aligned) or (value is None and raw):
                    uncertain[mark_type.value] = True

        if all(v is None for v in marks.values()):
            targets = list(mapping.values()) if header else list(MarkType)
            for mark_type, raw in zip(targets, self._numeric_cells(cells, name_index)):
                value = parse_mark_value(raw)
                if value is not None:
                    marks[mark_type] = value
                    uncertain[mark_type.value] = True

        return Student(number=number, name=name, marks=marks, uncertain=uncertain)

    @staticmethod
    def _alignment(
        cells: list[str], header: HeaderAnalysis, name_index: int | None
    ) -> tuple[bool, int]:
        """Offset from header column positions to row cell positions."""
        extra = len(cells) - len(header.columns)
        if extra == 0:
            return True, 0
        if header.name_index is not None and name_index is not None:
            offset = name_index - header.name_index
            trailing_match = len(cells) - name_index == len(header.columns) - header.name_index
            return trailing_match, offset
        if header.name_index is None and 0 < extra <= 2:
            return name_index is None or name_index < extra, extra
        return False, extra

    @staticmethod
    def _numeric_cells(cells: list[str], name_index: int | None) -> list[str]:
        numeric: list[str] = []
        for i, cell in enumerate(cells):
            if i == name_index or not is_numeric_cell(cell):
                continue
            leading = name_index is None or i < name_index
            if i == 0 and leading and len(cells) > 1 and _ORDINAL_CELL_RE.fullmatch(cell):
                continue
            numeric.append(cell)
        return numeric

    def from_structured(self, data: dict[str, Any]) -> BuildOutcome:
        """Build students from a parsed structured provider answer.

        Args:
            data: Dict with ``students`` and optional ``markTypes``.

        Returns:
            Students, detected mark types and warnings.
        """
        students: list[Student] = []
        warnings: list[str] = []
        for entry in data.get("students", []):
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            if not is_valid_student_name(name):
                warnings.append(f"Skipped structured row with invalid name '{name}'")
                continue

            marks = empty_marks()
            uncertain: dict[str, bool] = {}
            for key, raw in (entry.get("marks") or {}).items():
                mark_type = resolve_mark_key(key)
                if mark_type is None:
                    continue
                value = parse_mark_value(raw)
                marks[mark_type] = value
                if value is None and raw not in (None, ""):
                    uncertain[mark_type.value] = True
            students.append(Student(len(students) + 1, name, marks, uncertain))

        flags = data.get("markTypes") or {}
        candidates = {
            mark_type
            for key, present in flags.items()
            if present and (mark_type := resolve_mark_key(key)) is not None
        }
        if not flags:
            candidates = set(MarkType)
        return BuildOutcome(students, detect_populated(students, candidates), warnings)


def post_process_students(students: list[Student]) -> list[Student]:
    """Merge duplicate names and renumber contiguously from 1.

    Students sharing a normalized name are merged into the first one,
    which only receives values for its empty marks. Records with neither
    a valid name nor any mark are dropped. Out-of-range marks are
    cleared and flagged.

    Args:
        students: Students in reading order.

    Returns:
        New list of copies, numbered 1..n in first-appearance order.
    """
    merged: list[Student] = []
    by_name: dict[str, Student] = {}

    for student in students:
        if not is_valid_student_name(student.name) and student.mark_count == 0:
            continue
        record = student.copy()
        for mark_type, value in record.marks.items():
            if value is not None and not MIN_MARK <= value <= MAX_MARK:
                record.marks[mark_type] = None
                record.flag(mark_type.value)

        key = normalize_name(record.name)
        existing = by_name.get(key) if key else None
        if existing is None:
            if key:
                by_name[key] = record
            merged.append(record)
            continue

        for mark_type, value in record.marks.items():
            if existing.marks.get(mark_type) is None and value is not None:
                existing.marks[mark_type] = value
                existing.flag(mark_type.value, record.is_uncertain(mark_type.value))
        logger.debug("Merged duplicate student '%s'", record.name)

    for number, student in enumerate(merged, 1):
        student.number = number
    return merged
