"""
Permission cache.

Read-through TTL cache in front of the Policy Store, keyed by role id. It
serves the admin matrix view and per-request principal materialization.
"""
import time
from collections.abc import Awaitable, Callable

from app.core import config
from app.core.cache import TTLCache
from app.features.permissions.evaluator import RolePermissionEntry
from app.utils import get_logger


log = get_logger(__name__)


class PermissionCache:
    """
    Args:
        loader: Coroutine function returning a role's matrix rows
        ttl: Entry lifetime in seconds
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        loader: Callable[[str], Awaitable[list[RolePermissionEntry]]],
        ttl: float = config.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self._cache: TTLCache[tuple[RolePermissionEntry, ...]] = TTLCache(ttl=ttl, clock=clock)

    async def get(self, role_id: str) -> list[RolePermissionEntry]:
        async def load() -> tuple[RolePermissionEntry, ...]:
            log.debug(f"Permission cache miss for role {role_id}")
            return tuple(await self.loader(role_id))

        return list(await self._cache.get(role_id, load))

    def invalidate(self, role_id: str) -> None:
        self._cache.invalidate(role_id)
        log.debug(f"Permission cache invalidated for role {role_id}")

    def invalidate_all(self) -> None:
        self._cache.invalidate_all()
        log.info("Permission cache cleared")
