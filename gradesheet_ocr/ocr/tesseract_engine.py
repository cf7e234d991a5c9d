"""Local Tesseract provider with word-level extraction.

Runs pytesseract off the event loop and maps word boxes and
confidences onto provider text blocks.
"""

import asyncio
import io

import pytesseract
from PIL import Image, UnidentifiedImageError

from gradesheet_ocr.exceptions import DecodeError, ProviderError
from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import StrategyConfig
from gradesheet_ocr.utils.logger import get_logger

from .provider import BoundingBox, ProviderResponse, TextBlock

logger = get_logger(__name__)

_LANGUAGE_CODES = {"ar": "ara", "en": "eng", "fr": "fra"}


def tesseract_languages(hints: list[str], default: str) -> str:
    """Map strategy language hints (``ar``, ``fr-FR``...) to Tesseract codes."""
    codes: list[str] = []
    for hint in hints:
        code = _LANGUAGE_CODES.get(hint.split("-")[0].lower())
        if code and code not in codes:
            codes.append(code)
    return "+".join(codes) if codes else default


class TesseractEngine:
    """Wrapper around Tesseract OCR returning word-level text blocks.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Language used when a strategy gives no usable hint.
        psm: Tesseract page segmentation mode.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "ara+eng",
        psm: int = 6,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm

    def extract(self, image: Image.Image, lang: str) -> ProviderResponse:
        """Recognize words in a PIL image.

        Args:
            image: Input image.
            lang: Tesseract language string, e.g. ``"ara+eng"``.

        Returns:
            Word blocks with confidence in [0, 1] and the full text.
        """
        config = f"--psm {self.psm}"
        text = pytesseract.image_to_string(image, lang=lang, config=config)
        data = pytesseract.image_to_data(
            image, lang=lang, config=config, output_type=pytesseract.Output.DICT
        )

        blocks: list[TextBlock] = []
        for i, raw in enumerate(data["text"]):
            word = raw.strip()
            conf = float(data["conf"][i])
            if conf <= 0 or not word:
                continue
            blocks.append(
                TextBlock(
                    text=word,
                    confidence=conf / 100.0,
                    bounding_box=BoundingBox(
                        x=data["left"][i],
                        y=data["top"][i],
                        width=data["width"][i],
                        height=data["height"][i],
                    ),
                )
            )

        return ProviderResponse(text_blocks=blocks, raw_full_text=text)


class TesseractProvider:
    """OCR provider running Tesseract locally.

    Args:
        engine: Configured Tesseract engine.
    """

    name = "tesseract"

    def __init__(self, engine: TesseractEngine) -> None:
        self.engine = engine

    async def submit(
        self,
        image_bytes: bytes,
        strategy: StrategyConfig,
        token: CancellationToken | None = None,
    ) -> ProviderResponse:
        """Recognize text under ``strategy``.

        Raises:
            DecodeError: If Pillow cannot open the image.
            ProviderError: If Tesseract is missing or fails.
            CancellationError: If the token is cancelled.
        """
        token = token or CancellationToken()
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise DecodeError(f"Unable to open image: {exc}") from exc

        lang = tesseract_languages(strategy.language_hints, self.engine.default_lang)
        try:
            response = await token.run(asyncio.to_thread(self.engine.extract, image, lang))
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise ProviderError(f"Tesseract failed: {exc}", retryable=False) from exc

        logger.info(
            "Strategy %s: Tesseract (%s) found %d words, mean confidence %.2f",
            strategy.name,
            lang,
            len(response.text_blocks),
            response.average_confidence,
        )
        return response
