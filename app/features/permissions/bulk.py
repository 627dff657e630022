"""
Admin control plane: matrix/settings diffing and bulk application.

The console keeps a snapshot of the matrix taken at load time next to the
edited copy, submits only the cells that differ, and the server applies the
tuples and invalidates the affected roles in the permission cache.
"""
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.cache import PermissionCache
from app.features.permissions.schemas import PermissionMatrix, PermissionUpdate
from app.features.permissions.store import (
    get_permissions_by_key,
    get_roles_by_key,
    upsert_role_permission,
)
from app.utils import get_logger


log = get_logger(__name__)


def diff_matrix(original: PermissionMatrix, current: PermissionMatrix) -> list[PermissionUpdate]:
    """
    Compute the tuples that turn `original` into `current`.

    Only permission keys present in both maps, and role keys present in both
    sub-maps, are compared; anything else is not a change of an existing cell.

    Example:
        >>> diff_matrix({"users.ban": {"admin": False}}, {"users.ban": {"admin": True}})
        [PermissionUpdate(role='admin', permission_key='users.ban', allow=True, mode=<PermissionMode.ALL: 'all'>)]
    """
    updates: list[PermissionUpdate] = []
    for permission_key, roles in current.items():
        before = original.get(permission_key)
        if before is None:
            continue
        for role_key, allow in roles.items():
            if role_key in before and before[role_key] != allow:
                updates.append(PermissionUpdate(role=role_key, permission_key=permission_key, allow=allow))
    return updates


def diff_settings(original: Mapping[str, Any], current: Mapping[str, Any]) -> dict[str, Any]:
    """Return the categories present in both snapshots whose value changed."""
    return {
        category: value
        for category, value in current.items()
        if category in original and original[category] != value
    }


async def apply_bulk_update(
    db: AsyncSession,
    updates: Iterable[PermissionUpdate],
    cache: PermissionCache,
) -> int:
    """
    Apply matrix tuples and invalidate the affected roles.

    Every role and permission key is resolved before anything is written; an
    unknown key rejects the whole batch. Tuples are applied in order, so a
    later tuple for the same cell wins.

    Args:
        db: Database session (committed here)
        updates: Tuples to apply
        cache: Permission cache to invalidate

    Returns:
        Number of rows whose stored value changed

    Raises:
        HTTPException: 404 if a role or permission key does not exist
    """
    updates = list(updates)
    if not updates:
        return 0

    roles = await get_roles_by_key(db, {u.role for u in updates})
    permissions = await get_permissions_by_key(db, {u.permission_key for u in updates})

    unknown_roles = sorted({u.role for u in updates} - roles.keys())
    if unknown_roles:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown role(s): {', '.join(unknown_roles)}"
        )
    unknown_permissions = sorted({u.permission_key for u in updates} - permissions.keys())
    if unknown_permissions:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown permission(s): {', '.join(unknown_permissions)}"
        )

    changed_rows: set[tuple[str, str, str]] = set()
    affected_roles: set[str] = set()
    for update in updates:
        role = roles[update.role]
        permission = permissions[update.permission_key]
        _, changed = await upsert_role_permission(db, role, permission, update.mode, update.allow)
        if changed:
            changed_rows.add((role.id, permission.id, update.mode.value))
            affected_roles.add(role.id)

    await db.commit()

    for role_id in affected_roles:
        cache.invalidate(role_id)

    log.info(f"Bulk update applied: {len(updates)} tuples, {len(changed_rows)} rows changed")
    return len(changed_rows)
