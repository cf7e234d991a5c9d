"""HTTP transport for remote OCR providers with retry and endpoint fallback.

Retryable statuses and transport errors are retried by tenacity with
exponential backoff plus jitter. Not-found and forbidden responses move
on to the next candidate endpoint/model pair. Any other client error
fails immediately. Every wait and request observes the cancellation
token.
"""

import contextlib
import random
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from gradesheet_ocr.exceptions import ParseError, ProviderError
from gradesheet_ocr.utils.cancellation import CancellationToken
from gradesheet_ocr.utils.config import RetryConfig
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """A candidate base URL, optionally bound to a model name."""

    base_url: str
    model: str | None = None

    def __str__(self) -> str:
        return f"{self.base_url} ({self.model})" if self.model else self.base_url


class ProportionalJitter(wait_base):
    """Add up to ``ratio`` of the wrapped wait on top of it."""

    def __init__(
        self, base: wait_base, ratio: float, rng: Callable[[], float] = random.random
    ) -> None:
        self.base = base
        self.ratio = ratio
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base(retry_state)
        return delay + delay * self.ratio * self.rng()


def backoff_wait(
    policy: RetryConfig, rng: Callable[[], float] = random.random
) -> wait_base:
    """Build the wait strategy for ``policy``.

    The delay before retry ``n`` (1-based) is
    ``min(initial * multiplier**(n-1), max)`` plus a jitter of up to
    ``jitter_ratio`` of that delay.

    Args:
        policy: Retry configuration.
        rng: Source of uniform values in [0, 1).

    Returns:
        A tenacity wait strategy.
    """
    return ProportionalJitter(
        wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        policy.jitter_ratio,
        rng,
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class RetryingClient:
    """POST JSON to provider endpoints under the configured retry policy.

    Args:
        policy: Retry configuration.
        timeout: Per-request timeout in seconds.
        client: Optional shared ``httpx.AsyncClient``. When omitted a
            client is opened for each call.
        rng: Jitter source, injectable for tests.
    """

    def __init__(
        self,
        policy: RetryConfig,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy
        self.timeout = timeout
        self._client = client
        self._rng = rng

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def post_json(
        self,
        candidates: list[Endpoint],
        build_url: Callable[[Endpoint], str],
        payload: dict[str, Any],
        token: CancellationToken,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send ``payload`` to the first candidate that answers successfully.

        Args:
            candidates: Ordered endpoint/model pairs to try.
            build_url: Maps a candidate to its request URL.
            payload: JSON body.
            token: Cancellation token for this invocation.
            headers: Extra request headers.
            params: Extra query parameters.

        Returns:
            Decoded JSON body of the successful response.

        Raises:
            ProviderError: When a request is rejected as malformed, or all
                candidates and retries are exhausted.
            ParseError: When a successful response is not valid JSON.
            CancellationError: When the token is cancelled.
        """
        if not candidates:
            raise ProviderError("No provider endpoints configured")

        last_error: ProviderError | None = None
        async with self._session() as client:
            for endpoint in candidates:
                url = build_url(endpoint)
                retrying = AsyncRetrying(
                    stop=stop_after_attempt(self.policy.max_retries + 1),
                    wait=backoff_wait(self.policy, self._rng),
                    retry=retry_if_exception(_is_retryable),
                    sleep=token.sleep,
                    before_sleep=self._log_retry(endpoint),
                    reraise=True,
                )
                try:
                    async for attempt in retrying:
                        with attempt:
                            return await self._send(
                                client, endpoint, url, payload, token, headers, params
                            )
                except ProviderError as exc:
                    if exc.retryable:
                        last_error = exc
                        continue
                    if exc.status in self.policy.fallback_statuses:
                        logger.warning(
                            "Endpoint %s answered %d, trying next candidate",
                            endpoint,
                            exc.status,
                        )
                        last_error = exc
                        continue
                    raise

        raise last_error or ProviderError("All provider endpoints failed")

    async def _send(
        self,
        client: httpx.AsyncClient,
        endpoint: Endpoint,
        url: str,
        payload: dict[str, Any],
        token: CancellationToken,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
    ) -> dict[str, Any]:
        """Issue one request and classify its outcome."""
        try:
            response = await token.run(
                client.post(url, json=payload, headers=headers, params=params)
            )
        except httpx.TransportError as exc:
            raise ProviderError(
                f"Transport error from {endpoint}: {exc}", retryable=True
            ) from exc

        status = response.status_code
        if status < 400:
            try:
                return response.json()
            except ValueError as exc:
                raise ParseError(f"Invalid JSON from {endpoint}", raw=response.text) from exc

        if status in self.policy.fallback_statuses:
            raise ProviderError(f"Endpoint {endpoint} unavailable ({status})", status=status)
        if status in self.policy.retryable_statuses:
            raise ProviderError(
                f"Endpoint {endpoint} answered {status}", status=status, retryable=True
            )
        raise ProviderError(
            f"Request rejected by {endpoint} ({status}): {response.text[:200]}",
            status=status,
            retryable=False,
        )

    def _log_retry(self, endpoint: Endpoint) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            logger.warning(
                "Retrying %s after %s in %.2fs (attempt %d/%d)",
                endpoint,
                retry_state.outcome.exception(),
                retry_state.next_action.sleep,
                retry_state.attempt_number,
                self.policy.max_retries,
            )

        return log
