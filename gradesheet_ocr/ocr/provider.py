"""OCR provider contract shared by every recognition backend.

A provider receives image bytes and a strategy, and returns text
blocks with per-block confidence and optional positions. Structured
providers may also return a parsed student table.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import StrategyConfig


@dataclass
class BoundingBox:
    """Axis-aligned bounding box for a detected element."""

    x: int
    y: int
    width: int
    height: int

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2


@dataclass
class TextBlock:
    """A recognized piece of text with its confidence and position."""

    text: str
    confidence: float
    bounding_box: BoundingBox | None = None


@dataclass
class ProviderResponse:
    """Recognition output of one provider call."""

    text_blocks: list[TextBlock] = field(default_factory=list)
    raw_full_text: str | None = None
    structured: dict[str, Any] | None = None

    @property
    def average_confidence(self) -> float:
        """Mean confidence over all text blocks (0.0 when empty)."""
        if not self.text_blocks:
            return 0.0
        return sum(b.confidence for b in self.text_blocks) / len(self.text_blocks)


class OCRProvider(Protocol):
    """Recognition backend used by the pipeline."""

    name: str

    async def submit(
        self,
        image_bytes: bytes,
        strategy: StrategyConfig,
        token: CancellationToken | None = None,
    ) -> ProviderResponse:
        """Recognize text in ``image_bytes`` under ``strategy``."""
        ...


def guess_mime_type(image_bytes: bytes) -> str:
    """Guess the MIME type of encoded image bytes from their signature."""
    if image_bytes.startswith(b"\x89PNG"):
        return "image/png"
    if image_bytes.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if image_bytes[:4] in (b"II*\x00", b"MM\x00*"):
        return "image/tiff"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"
