"""
Settings cache.

Read-through TTL cache over the whole settings tree, with a background task
that re-fetches the tree once it is older than the TTL so that steady-state
reads are served from memory. The same class backs the client-side mirror; it
only needs a different loader.
"""
import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

from app.core import config
from app.core.cache import TTLCache
from app.features.settings.tree import OnMissing, SettingsTree
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

TREE_KEY = "settings"

# Shortest sleep between two background checks, in seconds
MIN_REFRESH_DELAY = 0.05


class SettingsCache:
    """
    Args:
        loader: Coroutine function returning the nested settings mapping
        ttl: Entry lifetime in seconds
        on_missing: Resolution of undefined feature flags
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[dict[str, Any]]],
        ttl: float = config.CACHE_TTL_SECONDS,
        on_missing: OnMissing = OnMissing(config.SETTINGS_ON_MISSING),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.on_missing = OnMissing(on_missing)
        self._cache: TTLCache[dict[str, Any]] = TTLCache(ttl=ttl, clock=clock)
        self._task: Optional[asyncio.Task] = None

    @property
    def ttl(self) -> float:
        return self._cache.ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def snapshot(self) -> SettingsTree:
        data = await self._cache.get(TREE_KEY, self.loader)
        return SettingsTree(data, on_missing=self.on_missing)

    async def get_flag(self, path: str) -> bool:
        return (await self.snapshot()).get_flag(path)

    async def get_limit(self, path: str, default: T) -> float | T:
        return (await self.snapshot()).get_limit(path, default)

    async def get_policy(self, path: str, default: Any) -> Any:
        return (await self.snapshot()).get_policy(path, default)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        self._cache.invalidate(TREE_KEY)

    async def refresh(self) -> SettingsTree:
        """
        Drop the cached tree and fetch it again now.

        Called right after an admin write so that the next read in this
        process observes the new value.
        """
        self.invalidate()
        tree = await self.snapshot()
        log.debug("Settings cache refreshed")
        return tree

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the auto-refresh task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._refresh_loop(), name="settings-cache-refresh")
        log.info(f"Settings auto-refresh started (ttl={self.ttl}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("Settings auto-refresh stopped")

    def _next_delay(self) -> float:
        entry = self._cache.peek(TREE_KEY)
        if entry is None:
            return 0.0
        return max(self.ttl - entry.age(self._cache.clock()), 0.0)

    async def _refresh_loop(self) -> None:
        while True:
            delay = self._next_delay()
            if delay <= 0:
                try:
                    await self.refresh()
                except Exception as e:
                    # The stale entry is left to expire; reads will retry and surface the error.
                    log.error(f"Background settings refresh failed: {e}", exc_info=True)
                    delay = self.ttl
                else:
                    delay = self.ttl
            await asyncio.sleep(max(delay, MIN_REFRESH_DELAY))
