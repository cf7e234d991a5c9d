"""Vision-style REST provider (``images:annotate``).

Submits the image with the strategy's feature set and language hints,
then flattens the page/block/paragraph/word hierarchy of the response
into word-level text blocks with averaged symbol confidence.
"""

import base64
from typing import Any

from gradesheet_ocr.exceptions import ParseError, ProviderError
from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import StrategyConfig
from gradesheet_ocr.utils.logger import get_logger

from .http_client import Endpoint, RetryingClient
from .provider import BoundingBox, ProviderResponse, TextBlock

logger = get_logger(__name__)

DEFAULT_ANNOTATION_CONFIDENCE = 0.8


def _bounding_box(poly: dict[str, Any] | None) -> BoundingBox | None:
    vertices = (poly or {}).get("vertices") or []
    if not vertices:
        return None
    xs = [v.get("x", 0) for v in vertices]
    ys = [v.get("y", 0) for v in vertices]
    return BoundingBox(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def _words_from_full_text(annotation: dict[str, Any]) -> list[TextBlock]:
    blocks: list[TextBlock] = []
    for page in annotation.get("pages", []):
        for block in page.get("blocks", []):
            for paragraph in block.get("paragraphs", []):
                for word in paragraph.get("words", []):
                    symbols = word.get("symbols", [])
                    text = "".join(s.get("text", "") for s in symbols)
                    if not text.strip():
                        continue
                    confidences = [
                        s["confidence"] for s in symbols if "confidence" in s
                    ]
                    if confidences:
                        confidence = sum(confidences) / len(confidences)
                    else:
                        confidence = word.get(
                            "confidence", DEFAULT_ANNOTATION_CONFIDENCE
                        )
                    blocks.append(
                        TextBlock(
                            text=text,
                            confidence=float(confidence),
                            bounding_box=_bounding_box(word.get("boundingBox")),
                        )
                    )
    return blocks


def parse_vision_response(data: dict[str, Any]) -> ProviderResponse:
    """Convert an ``images:annotate`` response into a provider response.

    Args:
        data: Decoded JSON body.

    Returns:
        Word-level text blocks plus the full recognized text.

    Raises:
        ProviderError: If the response reports an error for the image.
        ParseError: If the body has no ``responses`` entry.
    """
    responses = data.get("responses")
    if not isinstance(responses, list) or not responses:
        raise ParseError("Vision response has no 'responses' entry")

    first = responses[0]
    if "error" in first:
        error = first["error"]
        raise ProviderError(
            f"Vision error: {error.get('message', 'unknown')}",
            status=error.get("code"),
            retryable=False,
        )

    full = first.get("fullTextAnnotation") or {}
    blocks = _words_from_full_text(full)
    annotations = first.get("textAnnotations") or []

    if not blocks and len(annotations) > 1:
        blocks = [
            TextBlock(
                text=a.get("description", ""),
                confidence=DEFAULT_ANNOTATION_CONFIDENCE,
                bounding_box=_bounding_box(a.get("boundingPoly")),
            )
            for a in annotations[1:]
            if a.get("description", "").strip()
        ]

    raw = full.get("text")
    if raw is None and annotations:
        raw = annotations[0].get("description")
    return ProviderResponse(text_blocks=blocks, raw_full_text=raw)


class VisionProvider:
    """OCR provider speaking the ``images:annotate`` protocol.

    Args:
        client: Retrying HTTP client.
        endpoints: Candidate base URLs, tried in order.
        api_key: API key sent as the ``key`` query parameter.
    """

    name = "vision"

    def __init__(
        self, client: RetryingClient, endpoints: list[str], api_key: str | None
    ) -> None:
        self.client = client
        self.endpoints = [Endpoint(url.rstrip("/")) for url in endpoints]
        self.api_key = api_key

    @staticmethod
    def build_payload(image_bytes: bytes, strategy: StrategyConfig) -> dict[str, Any]:
        return {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode()},
                    "features": [{"type": f, "maxResults": 1} for f in strategy.features],
                    "imageContext": {
                        "languageHints": strategy.language_hints,
                        "textDetectionParams": {
                            "enableTextDetectionConfidenceScore": (
                                strategy.confidence_scoring
                            )
                        },
                    },
                }
            ]
        }

    async def submit(
        self,
        image_bytes: bytes,
        strategy: StrategyConfig,
        token: CancellationToken | None = None,
    ) -> ProviderResponse:
        """Recognize text under ``strategy``.

        Raises:
            ProviderError: On exhausted retries or a rejected request.
            CancellationError: If the token is cancelled.
        """
        token = token or CancellationToken()
        params = {"key": self.api_key} if self.api_key else None
        data = await self.client.post_json(
            self.endpoints,
            lambda ep: f"{ep.base_url}/images:annotate",
            self.build_payload(image_bytes, strategy),
            token,
            params=params,
        )
        response = parse_vision_response(data)
        logger.info(
            "Strategy %s: %d text blocks, mean confidence %.2f",
            strategy.name,
            len(response.text_blocks),
            response.average_confidence,
        )
        return response
