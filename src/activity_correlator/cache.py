"""Read-through caches for slow-changing upstream data."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class _Snapshot(Generic[T]):
    value: T
    loaded_at: float


class TtlCache(Generic[T]):
    """Holds one value, reloaded once it is older than ``ttl_seconds``.

    A refresh builds a new snapshot and swaps the reference; a reader that
    already holds the old value keeps a consistent copy.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[_Snapshot[T]] = None
        self._lock = asyncio.Lock()

    def peek(self) -> Optional[T]:
        snapshot = self._snapshot
        if snapshot is None or self._expired(snapshot):
            return None
        return snapshot.value

    def _expired(self, snapshot: _Snapshot[T]) -> bool:
        return self._clock() - snapshot.loaded_at >= self.ttl_seconds

    async def get(self, loader: Callable[[], Awaitable[T]]) -> T:
        snapshot = self._snapshot
        if snapshot is not None and not self._expired(snapshot):
            return snapshot.value
        async with self._lock:
            # Another task may have refreshed while this one waited.
            snapshot = self._snapshot
            if snapshot is not None and not self._expired(snapshot):
                return snapshot.value
            value = await loader()
            self._snapshot = _Snapshot(value, self._clock())
            logger.debug("Refreshed %s cache", self.name)
            return value

    def invalidate(self) -> None:
        if self._snapshot is not None:
            logger.info("Invalidated %s cache", self.name)
        self._snapshot = None
