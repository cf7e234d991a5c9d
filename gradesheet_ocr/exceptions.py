"""Exception classes for the gradesheet OCR pipeline.

Every error raised by the pipeline inherits from ``GradesheetOCRError``
so callers can catch all library failures in one place.

Example:
    >>> try:
    ...     result = pipeline.run_sync(image_bytes)
    ... except DecodeError:
    ...     print("Image could not be read")
    ... except GradesheetOCRError as e:
    ...     print(f"Extraction failed: {e}")
"""


class GradesheetOCRError(Exception):
    """Base exception for all gradesheet OCR errors."""

    pass


class ConfigurationError(GradesheetOCRError):
    """Raised for invalid configuration values."""

    pass


class DecodeError(GradesheetOCRError):
    """Raised when the input bytes cannot be decoded as an image.

    This is fatal for the invocation and never retried.
    """

    pass


class ProviderError(GradesheetOCRError):
    """Raised when an OCR provider call fails.

    Args:
        message: Human readable failure description.
        status: HTTP status code of the last response, if any.
        retryable: Whether the failure belongs to the retryable class.
    """

    def __init__(
        self, message: str, status: int | None = None, retryable: bool = False
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ParseError(ProviderError):
    """Raised when a provider response stays malformed after lenient re-parsing.

    Treated by the orchestrator as a per-strategy provider failure.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message, status=None, retryable=False)
        self.raw = raw


class ExtractionError(GradesheetOCRError):
    """Raised when no students were found across all strategies and passes."""

    pass


class CancellationError(GradesheetOCRError):
    """Raised when an invocation was cancelled through its token.

    Cancellation is cooperative and is not a failure.
    """

    pass
