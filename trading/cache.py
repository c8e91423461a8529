"""TTL read-through cache guarding the hot account queries of one trader handle."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class TTLCache(Generic[T]):
    """
    Serve a cached value while it is younger than ``ttl_seconds``, otherwise
    call ``fetch_fn`` and remember its result.

    The lock only guards the stored ``(value, fetched_at)`` pair; it is never
    held while ``fetch_fn`` runs, so concurrent misses may each hit the backend
    and the last writer wins. Fetch errors propagate and leave the old value in
    place.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: Optional[Tuple[T, float]] = None

    def peek(self) -> Optional[T]:
        """Return the fresh cached value, or ``None`` on a miss."""
        with self._lock:
            entry = self._entry
        if entry is None:
            return None
        value, fetched_at = entry
        if self._clock() - fetched_at < self.ttl_seconds:
            return value
        return None

    def get_or_fetch(self, fetch_fn: Callable[[], T]) -> T:
        with self._lock:
            entry = self._entry
        if entry is not None:
            value, fetched_at = entry
            age = self._clock() - fetched_at
            if age < self.ttl_seconds:
                LOGGER.debug("cache_hit name=%s age=%.2fs", self.name, age)
                return value

        LOGGER.debug("cache_miss name=%s", self.name)
        value = fetch_fn()
        with self._lock:
            self._entry = (value, self._clock())
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None
