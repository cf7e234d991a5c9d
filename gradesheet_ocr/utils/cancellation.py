"""Cooperative cancellation for pipeline invocations.

A token is created per invocation and threaded through every async
step. Steps observe it at their suspension points and unwind by
raising ``CancellationError``.
"""

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from gradesheet_ocr.exceptions import CancellationError
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cancellation handle shared by one pipeline invocation.

    ``cancel`` may be called from any thread. The event loop that awaits
    the token is recorded on first use and woken through
    ``call_soon_threadsafe`` when the call comes from elsewhere.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._cancelled = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel`` has been called."""
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation to every step observing this token."""
        if self._cancelled:
            return
        self._cancelled = True
        logger.info("Cancellation requested")
        loop = self._loop
        if loop is None or loop.is_closed() or _running_loop() is loop:
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self) -> None:
        """Raise ``CancellationError`` if the token has been cancelled."""
        if self._cancelled:
            raise CancellationError("Operation cancelled")

    def _bind(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        # cancel() may have run on another thread before the loop was known
        if self._cancelled and not self._event.is_set():
            self._event.set()

    async def sleep(self, delay: float) -> None:
        """Wait for ``delay`` seconds unless cancelled first.

        Args:
            delay: Seconds to wait.

        Raises:
            CancellationError: If the token is cancelled before the delay ends.
        """
        self.raise_if_cancelled()
        self._bind()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            return
        raise CancellationError("Operation cancelled during backoff")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, aborting it if the token is cancelled meanwhile.

        Args:
            awaitable: Coroutine or future to race against cancellation.

        Returns:
            The awaited result.

        Raises:
            CancellationError: If cancellation wins the race. The
                in-flight work is cancelled before raising.
        """
        self.raise_if_cancelled()
        self._bind()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise CancellationError("Operation cancelled while in flight")


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
