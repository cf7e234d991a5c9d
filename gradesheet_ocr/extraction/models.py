"""Data model for extracted gradesheet records."""

import copy
from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any


class MarkType(StrEnum):
    """Assessment categories recorded per student."""

    EXAM1 = "exam1"
    EXAM2 = "exam2"
    EXAM3 = "exam3"
    EXAM4 = "exam4"
    ACTIVITIES = "activities"


class ColumnKind(StrEnum):
    """Semantic kind of a table column."""

    NAME = "name"
    NUMBER = "number"
    MARK = "mark"
    OTHER = "other"


def empty_marks() -> dict[MarkType, float | None]:
    return {mark_type: None for mark_type in MarkType}


@dataclass
class DetectedMarkTypes:
    """Which mark columns were found (and populated) in the source."""

    exam1: bool = False
    exam2: bool = False
    exam3: bool = False
    exam4: bool = False
    activities: bool = False

    @classmethod
    def from_types(cls, mark_types: Any) -> "DetectedMarkTypes":
        return cls(**{MarkType(t).value: True for t in mark_types})

    def __getitem__(self, mark_type: MarkType) -> bool:
        return getattr(self, MarkType(mark_type).value)

    def __setitem__(self, mark_type: MarkType, value: bool) -> None:
        setattr(self, MarkType(mark_type).value, value)

    def active(self) -> list[MarkType]:
        """Detected types in canonical order."""
        return [t for t in MarkType if self[t]]

    @property
    def count(self) -> int:
        return len(self.active())

    def merge(self, other: "DetectedMarkTypes") -> "DetectedMarkTypes":
        """Logical OR of two detections."""
        return DetectedMarkTypes(
            **{f.name: getattr(self, f.name) or getattr(other, f.name) for f in fields(self)}
        )

    def to_dict(self) -> dict[str, bool]:
        return {t.value: self[t] for t in MarkType}


@dataclass
class Student:
    """One gradesheet row.

    ``uncertain`` holds review flags keyed by ``"name"`` or a mark type
    value; a missing key means the field is trusted.
    """

    number: int
    name: str
    marks: dict[MarkType, float | None] = field(default_factory=empty_marks)
    uncertain: dict[str, bool] = field(default_factory=dict)

    def mark(self, mark_type: MarkType) -> float | None:
        return self.marks.get(MarkType(mark_type))

    @property
    def mark_count(self) -> int:
        return sum(1 for v in self.marks.values() if v is not None)

    def is_uncertain(self, field_name: str) -> bool:
        return self.uncertain.get(str(field_name), False)

    def flag(self, field_name: str, value: bool = True) -> None:
        if value:
            self.uncertain[str(field_name)] = True
        else:
            self.uncertain.pop(str(field_name), None)

    def copy(self) -> "Student":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "marks": {t.value: self.marks.get(t) for t in MarkType},
            "uncertain": {k: v for k, v in self.uncertain.items() if v},
        }


@dataclass
class ColumnInfo:
    """A header column and its interpretation."""

    index: int
    title: str
    kind: ColumnKind
    mark_type: MarkType | None = None


@dataclass
class HeaderAnalysis:
    """A detected header row and the column schema it defines."""

    line_index: int
    columns: list[ColumnInfo]

    @property
    def column_mapping(self) -> dict[int, MarkType]:
        """Column index to mark type, first column wins on duplicates."""
        mapping: dict[int, MarkType] = {}
        for col in self.columns:
            if col.mark_type is not None and col.mark_type not in mapping.values():
                mapping[col.index] = col.mark_type
        return mapping

    @property
    def name_index(self) -> int | None:
        return next((c.index for c in self.columns if c.kind == ColumnKind.NAME), None)


@dataclass
class ExtractionResult:
    """Students extracted by one strategy (or fused from several)."""

    students: list[Student]
    detected: DetectedMarkTypes = field(default_factory=DetectedMarkTypes)
    confidence: float = 0.0
    strategy: str = ""
    priority: int = 1
    processing_time: float = 0.0
    warnings: list[str] = field(default_factory=list)
    raw_text: str = ""

    def composition(self) -> tuple[Any, ...]:
        """Hashable summary of names, marks and detection."""
        return (
            tuple(
                (s.name, tuple(s.marks.get(t) for t in MarkType)) for s in self.students
            ),
            tuple(self.detected.to_dict().items()),
        )
