"""
Settings dependencies.
"""
from typing import Annotated
from fastapi import Depends, Request

from app.features.settings.cache import SettingsCache
from app.features.settings.tree import SettingsTree


def get_settings_cache(request: Request) -> SettingsCache:
    return request.app.state.settings_cache


async def get_settings_snapshot(
    cache: Annotated[SettingsCache, Depends(get_settings_cache)],
) -> SettingsTree:
    """
    Settings tree for the current request.

    FastAPI caches the result per request, so every gate of one request sees
    the same snapshot.
    """
    return await cache.snapshot()
