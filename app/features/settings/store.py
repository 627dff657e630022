"""
Settings Tree persistence.
"""
from typing import Any, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.settings.models import SystemSetting
from app.features.settings.tree import build_tree
from app.utils import get_logger


log = get_logger(__name__)


async def read_categories(db: AsyncSession) -> dict[str, Any]:
    """Category key -> stored value, one entry per row."""
    result = await db.execute(select(SystemSetting.key, SystemSetting.value).order_by(SystemSetting.key))
    return {row.key: row.value for row in result.all()}


async def read_tree(db: AsyncSession) -> dict[str, Any]:
    return build_tree((await read_categories(db)).items())


async def upsert_category(
    db: AsyncSession,
    category: str,
    value: Any,
    actor_id: Optional[str] = None,
    description: Optional[str] = None,
) -> tuple[SystemSetting, bool]:
    """
    Replace the value stored under a settings category.

    Returns:
        The setting row and whether it was created
    """
    result = await db.execute(select(SystemSetting).where(SystemSetting.key == category))
    setting = result.scalar_one_or_none()
    created = setting is None

    if created:
        setting = SystemSetting(key=category, value=value, description=description, updated_by=actor_id)
        db.add(setting)
    else:
        setting.value = value
        setting.updated_by = actor_id
        if description is not None:
            setting.description = description

    await db.commit()
    await db.refresh(setting)
    log.info(f"Setting {category} {'created' if created else 'updated'} by {actor_id}")
    return setting, created


class SettingsStore:
    """
    Loader for the settings cache.

    Opens its own session per load because the cache outlives requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_tree(self) -> dict[str, Any]:
        async with self.session_factory() as db:
            tree = await read_tree(db)
        log.debug(f"Loaded settings tree with {len(tree)} top-level categories")
        return tree
