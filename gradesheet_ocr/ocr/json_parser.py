"""Lenient parsing of structured JSON answers from generative providers.

Model output often wraps JSON in code fences, adds prose around it, or
leaves trailing commas. Several repair attempts are made before the
answer is rejected with ``ParseError``.
"""

import json
import re
from collections.abc import Callable
from typing import Any

from gradesheet_ocr.exceptions import ParseError
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_RE = re.compile(r"'([^'\\]*(?:\\.[^'\\]*)*)'")
_VALIDATED_STUDENTS = 3


def _direct(text: str) -> str:
    return text.strip()


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def _outer_object(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start : end + 1]


def _repair(text: str) -> str:
    candidate = _outer_object(_strip_fences(text))
    candidate = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    if "'" in candidate and '"' not in candidate:
        candidate = _SINGLE_QUOTED_RE.sub(r'"\1"', candidate)
    return candidate


_ATTEMPTS: list[tuple[str, Callable[[str], str]]] = [
    ("direct", _direct),
    ("strip_fences", _strip_fences),
    ("outer_object", _outer_object),
    ("repair", _repair),
]


def validate_structure(data: Any) -> dict[str, Any]:
    """Check the shape of a parsed student table.

    Args:
        data: Decoded JSON value.

    Returns:
        The same value, typed as a dict.

    Raises:
        ParseError: If ``students`` is not a list, ``markTypes`` is not an
            object, or one of the first students lacks a name or marks.
    """
    if not isinstance(data, dict):
        raise ParseError("Structured response is not a JSON object")
    students = data.get("students")
    if not isinstance(students, list):
        raise ParseError("Structured response has no 'students' list")
    if not isinstance(data.get("markTypes", {}), dict):
        raise ParseError("'markTypes' must be an object")
    for i, student in enumerate(students[:_VALIDATED_STUDENTS]):
        if not isinstance(student, dict):
            raise ParseError(f"Student {i + 1} is not an object")
        if not isinstance(student.get("name"), str) or not student["name"].strip():
            raise ParseError(f"Student {i + 1} has no name")
        if not isinstance(student.get("marks"), dict):
            raise ParseError(f"Student {i + 1} has no marks object")
    return data


def parse_structured_response(text: str) -> dict[str, Any]:
    """Parse a provider answer into a validated student table.

    Args:
        text: Raw answer text.

    Returns:
        Dict with ``students`` and optional ``markTypes``.

    Raises:
        ParseError: When every re-parse attempt fails or the decoded
            value has the wrong shape.
    """
    if not text or not text.strip():
        raise ParseError("Empty structured response", raw=text or "")

    for name, transform in _ATTEMPTS:
        try:
            data = json.loads(transform(text))
        except json.JSONDecodeError:
            logger.debug("JSON parse attempt '%s' failed", name)
            continue
        if name != "direct":
            logger.info("Structured response recovered with '%s'", name)
        try:
            return validate_structure(data)
        except ParseError as exc:
            raise ParseError(str(exc), raw=text) from exc

    raise ParseError("Could not parse structured response as JSON", raw=text)
