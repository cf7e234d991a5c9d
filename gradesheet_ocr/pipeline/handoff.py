"""Hand-off of final results to a spreadsheet writer.

The pipeline does not write cells itself. It describes, per student and
mark type, what a writer should insert, and passes that plan to an
adapter supplied by the host application.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from gradesheet_ocr.extraction.models import DetectedMarkTypes, MarkType, Student


@dataclass
class InsertionIntent:
    """What a writer should do with one student's mark."""

    student_number: int
    student_name: str
    field: MarkType
    value: float | None
    will_insert: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_number": self.student_number,
            "student_name": self.student_name,
            "field": self.field.value,
            "value": self.value,
            "will_insert": self.will_insert,
        }


class SpreadsheetAdapter(Protocol):
    """Writer for finished results, called only after a successful run."""

    def write(
        self,
        students: list[Student],
        detected: DetectedMarkTypes,
        intents: list[InsertionIntent],
    ) -> None:
        ...


def build_insertion_plan(
    students: list[Student], detected: DetectedMarkTypes
) -> list[InsertionIntent]:
    """One intent per student and mark type.

    A mark is inserted only when it is present and its column was
    detected in the source.
    """
    return [
        InsertionIntent(
            student_number=student.number,
            student_name=student.name,
            field=mark_type,
            value=student.mark(mark_type),
            will_insert=student.mark(mark_type) is not None and detected[mark_type],
        )
        for student in students
        for mark_type in MarkType
    ]
