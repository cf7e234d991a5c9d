"""Generative-model provider (``generateContent``).

Two modes share one transport: a structured mode asks the model for the
student table as JSON, a text mode asks for a pipe-delimited
transcription that goes through the regular table analyzer.
"""

import base64
from typing import Any

from gradesheet_ocr.exceptions import ParseError
from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import StrategyConfig
from gradesheet_ocr.utils.logger import get_logger

from .http_client import Endpoint, RetryingClient
from .json_parser import parse_structured_response
from .provider import ProviderResponse, TextBlock, guess_mime_type

logger = get_logger(__name__)

DEFAULT_LINE_CONFIDENCE = 0.8

STRUCTURED_PROMPT = """\
You are reading a photographed school gradesheet (Arabic, French or English).
Return ONLY a JSON object of this shape, with no commentary:
{
  "students": [
    {"number": 1, "name": "<full name as written>",
     "marks": {"exam1": <number|null>, "exam2": <number|null>,
               "exam3": <number|null>, "exam4": <number|null>,
               "activities": <number|null>}}
  ],
  "markTypes": {"exam1": <bool>, "exam2": <bool>, "exam3": <bool>,
                "exam4": <bool>, "activities": <bool>}
}
Marks are on a 0-20 scale; use null for empty cells. Keep row order.
Ignore summary rows such as class averages or totals.
"""

TEXT_PROMPT = """\
Transcribe the table in this gradesheet photograph exactly as written.
Output one table row per line, header row first, and separate cells
with " | ". Keep empty cells as empty text between separators.
Do not translate, correct or summarize anything.
"""


def _answer_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        raise ParseError("Generative response has no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts)
    if not text.strip():
        raise ParseError("Generative response is empty")
    return text


class GenerativeProvider:
    """OCR provider backed by a multimodal generative model.

    Args:
        client: Retrying HTTP client.
        endpoints: Candidate base URLs.
        models: Candidate model names; every model is tried on every
            endpoint, models first.
        api_key: API key sent in the ``x-goog-api-key`` header.
    """

    name = "generative"

    def __init__(
        self,
        client: RetryingClient,
        endpoints: list[str],
        models: list[str],
        api_key: str | None,
    ) -> None:
        self.client = client
        self.candidates = [
            Endpoint(url.rstrip("/"), model) for model in models for url in endpoints
        ]
        self.api_key = api_key

    @staticmethod
    def build_payload(image_bytes: bytes, strategy: StrategyConfig) -> dict[str, Any]:
        structured = strategy.mode == "structured"
        prompt = STRUCTURED_PROMPT if structured else TEXT_PROMPT
        if strategy.language_hints:
            prompt += f"\nExpected languages: {', '.join(strategy.language_hints)}."
        return {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": guess_mime_type(image_bytes),
                                "data": base64.b64encode(image_bytes).decode(),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.1,
                "responseMimeType": "application/json" if structured else "text/plain",
            },
        }

    async def submit(
        self,
        image_bytes: bytes,
        strategy: StrategyConfig,
        token: CancellationToken | None = None,
    ) -> ProviderResponse:
        """Recognize the gradesheet under ``strategy``.

        Raises:
            ProviderError: On exhausted retries or a rejected request.
            ParseError: If a structured answer cannot be parsed.
            CancellationError: If the token is cancelled.
        """
        token = token or CancellationToken()
        headers = {"x-goog-api-key": self.api_key} if self.api_key else None
        data = await self.client.post_json(
            self.candidates,
            lambda ep: f"{ep.base_url}/models/{ep.model}:generateContent",
            self.build_payload(image_bytes, strategy),
            token,
            headers=headers,
        )
        text = _answer_text(data)

        if strategy.mode == "structured":
            structured = parse_structured_response(text)
            logger.info(
                "Strategy %s: structured answer with %d students",
                strategy.name,
                len(structured["students"]),
            )
            return ProviderResponse(raw_full_text=text, structured=structured)

        blocks = [
            TextBlock(text=line, confidence=DEFAULT_LINE_CONFIDENCE)
            for line in text.splitlines()
            if line.strip()
        ]
        logger.info("Strategy %s: %d transcribed lines", strategy.name, len(blocks))
        return ProviderResponse(text_blocks=blocks, raw_full_text=text)
