"""
Client-side settings mirror.

`RemoteSettingsLoader` fetches the settings tree over HTTP so that a
`SettingsCache` can run in a client process with the same TTL and
auto-refresh behaviour as the server-side one.
"""
from typing import Any

import httpx

from app.core import config
from app.features.settings.cache import SettingsCache
from app.features.settings.tree import OnMissing
from app.utils import get_logger


log = get_logger(__name__)


class RemoteSettingsLoader:
    """
    Args:
        client: httpx client configured with the API base URL and credentials
        path: Settings endpoint
    """

    def __init__(self, client: httpx.AsyncClient, path: str = "/settings"):
        self.client = client
        self.path = path

    async def __call__(self) -> dict[str, Any]:
        response = await self.client.get(self.path)
        response.raise_for_status()
        body = response.json()
        log.debug(f"Fetched settings tree from {self.path}")
        return body["settings"]


def remote_settings_cache(
    client: httpx.AsyncClient,
    ttl: float = config.CACHE_TTL_SECONDS,
    on_missing: OnMissing = OnMissing(config.SETTINGS_ON_MISSING),
) -> SettingsCache:
    """Build a settings cache backed by the settings API."""
    return SettingsCache(RemoteSettingsLoader(client), ttl=ttl, on_missing=on_missing)
