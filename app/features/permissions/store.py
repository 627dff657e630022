"""
Policy Store reads.

Query helpers over the role/permission tables, shared by the admin routes,
the bulk-update path and the permission cache loader.
"""
from typing import Optional
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.permissions.evaluator import RolePermissionEntry
from app.features.permissions.models import (
    Permission,
    PermissionMode,
    Role,
    RolePermission,
    user_roles,
)
from app.utils import get_logger


log = get_logger(__name__)


async def fetch_role_entries(db: AsyncSession, role_id: str) -> list[RolePermissionEntry]:
    stmt = (
        select(RolePermission, Permission)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.key, RolePermission.mode)
    )
    result = await db.execute(stmt)
    return [
        RolePermissionEntry(
            role_id=row.RolePermission.role_id,
            permission_id=row.Permission.id,
            permission_key=row.Permission.key,
            mode=PermissionMode(row.RolePermission.mode),
            allow=bool(row.RolePermission.allow),
            label=row.Permission.label,
            group=row.Permission.group,
        )
        for row in result.all()
    ]


async def get_role_by_ref(db: AsyncSession, role_ref: str) -> Optional[Role]:
    """Look a role up by id or by key."""
    result = await db.execute(select(Role).where(or_(Role.id == role_ref, Role.key == role_ref)))
    return result.scalars().first()


async def get_roles_by_key(db: AsyncSession, keys: set[str]) -> dict[str, Role]:
    if not keys:
        return {}
    result = await db.execute(select(Role).where(Role.key.in_(keys)))
    return {role.key: role for role in result.scalars().all()}


async def get_permission_by_key(db: AsyncSession, key: str) -> Optional[Permission]:
    result = await db.execute(select(Permission).where(Permission.key == key))
    return result.scalars().first()


async def get_permissions_by_key(db: AsyncSession, keys: set[str]) -> dict[str, Permission]:
    if not keys:
        return {}
    result = await db.execute(select(Permission).where(Permission.key.in_(keys)))
    return {permission.key: permission for permission in result.scalars().all()}


async def get_user_roles(db: AsyncSession, user_id: str) -> list[Role]:
    stmt = (
        select(Role)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user_id)
        .order_by(Role.key)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def upsert_role_permission(
    db: AsyncSession,
    role: Role,
    permission: Permission,
    mode: PermissionMode,
    allow: bool,
) -> tuple[RolePermission, bool]:
    """
    Insert or update one matrix cell. Does not commit.

    Returns:
        The row and whether its stored value changed (created or flipped)
    """
    stmt = select(RolePermission).where(
        RolePermission.role_id == role.id,
        RolePermission.permission_id == permission.id,
        RolePermission.mode == mode,
    )
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()

    if row is None:
        row = RolePermission(role_id=role.id, permission_id=permission.id, mode=mode, allow=allow)
        db.add(row)
        await db.flush()
        return row, True

    if row.allow == allow:
        return row, False

    row.allow = allow
    await db.flush()
    return row, True


class PolicyStore:
    """
    Loader for the permission cache.

    Opens its own session per load because the cache outlives requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def role_permissions(self, role_id: str) -> list[RolePermissionEntry]:
        async with self.session_factory() as db:
            entries = await fetch_role_entries(db, role_id)
        log.debug(f"Loaded {len(entries)} matrix rows for role {role_id}")
        return entries
