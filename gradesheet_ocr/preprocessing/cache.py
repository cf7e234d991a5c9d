"""Bounded LRU cache for preprocessed images.

The cache is the only state shared across pipeline invocations.
Entries expire after a fixed time-to-live; on overflow the least
recently used entry is evicted first.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)


class ImageCache:
    """Thread-safe LRU cache with per-entry expiry.

    Args:
        capacity: Maximum number of entries kept.
        ttl_seconds: Lifetime of an entry after it was stored.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        capacity: int = 10,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(image_bytes: bytes, options: BaseModel | None = None) -> str:
        """Build a cache key from the image identity and its option set."""
        digest = hashlib.sha256(image_bytes).hexdigest()
        if options is None:
            return digest
        opts = hashlib.sha256(options.model_dump_json().encode()).hexdigest()[:16]
        return f"{digest}:{opts}"

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                logger.debug("Cache entry expired: %s", key[:12])
                return None
            self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: Any) -> None:
        """Store a value, evicting expired then least recently used entries."""
        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            self._purge_expired()
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache evicted: %s", evicted[:12])

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            k for k, (stored_at, _) in self._entries.items()
            if now - stored_at > self.ttl_seconds
        ]
        for k in expired:
            del self._entries[k]
