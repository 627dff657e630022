"""
Time-boxed read-through cache.

Both the permission cache (keyed by role id) and the settings cache (a single
entry holding the whole settings tree) are built on `TTLCache`.

Reads are lock-free. Two concurrent misses for the same key both call the
loader and the last store wins; cached values are projections of the store,
so either result is acceptable. Invalidation never waits on readers, but it
bumps a generation so that a load started before it is returned to its
caller without being stored.
"""
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from app.core import config


T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the monotonic time it was fetched."""
    value: T
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at


class TTLCache(Generic[T]):
    """
    Read-through cache whose entries are fresh while `now - fetched_at < ttl`.

    Args:
        ttl: Entry lifetime in seconds
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        ttl: float = config.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._generations: dict[Hashable, int] = {}
        self._epoch = 0

    def peek(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the raw entry for `key`, fresh or not, without loading."""
        return self._entries.get(key)

    def is_fresh(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.age(self.clock()) < self.ttl

    def lookup(self, key: Hashable) -> Optional[T]:
        """Return the cached value if fresh, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.age(self.clock()) >= self.ttl:
            self._entries.pop(key, None)
            return None
        return entry.value

    def store(self, key: Hashable, value: T) -> T:
        self._entries[key] = CacheEntry(value=value, fetched_at=self.clock())
        return value

    async def get(self, key: Hashable, loader: Callable[[], Awaitable[T]]) -> T:
        """
        Return the fresh cached value for `key` or load, store and return it.

        Loader exceptions propagate and leave the cache untouched.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.age(self.clock()) < self.ttl:
            return entry.value
        generation = self.generation(key)
        value = await loader()
        if self.generation(key) != generation:
            # Invalidated while loading: the value may predate the write
            return value
        return self.store(key, value)

    def generation(self, key: Hashable) -> tuple[int, int]:
        """Changes whenever `key` is invalidated."""
        return self._epoch, self._generations.get(key, 0)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1

    def invalidate_all(self) -> None:
        self._entries.clear()
        self._generations.clear()
        self._epoch += 1

    def __len__(self) -> int:
        return len(self._entries)
