"""Construction of the configured OCR provider."""

import os

import httpx

from gradesheet_ocr.exceptions import ConfigurationError
from gradesheet_ocr.utils.config import AppConfig

from .generative_provider import GenerativeProvider
from .http_client import RetryingClient
from .provider import OCRProvider
from .tesseract_engine import TesseractEngine, TesseractProvider
from .vision_provider import VisionProvider

_DEFAULT_MODELS = ["gemini-2.0-flash", "gemini-1.5-flash"]
_DEFAULT_ENDPOINTS = {
    "vision": ["https://vision.googleapis.com/v1"],
    "generative": ["https://generativelanguage.googleapis.com/v1beta"],
}


def create_provider(
    config: AppConfig, http_client: httpx.AsyncClient | None = None
) -> OCRProvider:
    """Build the provider named in ``config.ocr.provider``.

    Args:
        config: Application configuration.
        http_client: Optional shared HTTP client for remote providers.

    Returns:
        Provider instance.

    Raises:
        ConfigurationError: If a remote provider has no API key in the
            configured environment variable.
    """
    ocr = config.ocr
    if ocr.provider == "tesseract":
        return TesseractProvider(
            TesseractEngine(ocr.tesseract_cmd, ocr.default_lang, ocr.psm)
        )

    api_key = os.environ.get(ocr.api_key_env)
    if not api_key:
        raise ConfigurationError(
            f"Provider '{ocr.provider}' needs an API key in ${ocr.api_key_env}"
        )

    client = RetryingClient(config.retry, ocr.timeout_seconds, http_client)
    endpoints = ocr.endpoints or _DEFAULT_ENDPOINTS[ocr.provider]
    if ocr.provider == "generative":
        return GenerativeProvider(
            client, endpoints, ocr.models or _DEFAULT_MODELS, api_key
        )
    return VisionProvider(client, endpoints, api_key)
