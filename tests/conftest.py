"""Shared test fixtures for the gradesheet OCR test suite."""

import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from gradesheet_ocr.correction.name_rules import default_name_rules
from gradesheet_ocr.extraction.models import MarkType, Student, empty_marks


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic BGR test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def gradesheet_image() -> np.ndarray:
    """White page with dark horizontal ruling lines, like a printed table."""
    image = np.full((400, 600, 3), 255, dtype=np.uint8)
    for y in range(40, 400, 40):
        image[y : y + 2, 20:580] = (30, 30, 30)
    for x in (20, 200, 320, 440, 580):
        image[40:362, x : x + 2] = (30, 30, 30)
    return image


@pytest.fixture
def png_bytes(gradesheet_image: np.ndarray) -> bytes:
    """The synthetic gradesheet encoded as PNG."""
    buf = io.BytesIO()
    Image.fromarray(gradesheet_image[:, :, ::-1]).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def name_rules() -> list:
    """Built-in name rule table, independent of files on disk."""
    return default_name_rules()


def make_student(
    number: int, name: str, uncertain: dict[str, bool] | None = None, **marks: float | None
) -> Student:
    """Build a student with marks given by mark type value."""
    values = empty_marks()
    for key, value in marks.items():
        values[MarkType(key)] = value
    return Student(number=number, name=name, marks=values, uncertain=dict(uncertain or {}))
