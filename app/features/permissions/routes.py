"""
Permission management API routes.

Provides the role/permission catalog, per-role matrix editing, user-role
assignment, the admin matrix snapshot and bulk update, and cache control.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.enforcement.dependencies import require_permission
from app.features.permissions.bulk import apply_bulk_update
from app.features.permissions.cache import PermissionCache
from app.features.permissions.dependencies import create_audit_log, get_permission_cache
from app.features.permissions.evaluator import Principal, RolePermissionEntry
from app.features.permissions.models import (
    Permission,
    PermissionMode,
    Role,
    RolePermission,
    user_roles,
)
from app.features.permissions.schemas import (
    BulkUpdateRequest,
    BulkUpdateResponse,
    PermissionCatalogResponse,
    PermissionMatrixResponse,
    PermissionResponse,
    RolePermissionResponse,
    RolePermissionsResponse,
    RolePermissionUpsert,
    RoleRef,
    RoleWithCountResponse,
    UserRoleAssignment,
    UserRolesResponse,
)
from app.features.permissions.store import (
    get_permission_by_key,
    get_role_by_ref,
    get_user_roles,
    upsert_role_permission,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()
admin_router = APIRouter(prefix="/admin")


def _to_response(entry: RolePermissionEntry) -> RolePermissionResponse:
    return RolePermissionResponse(
        id=entry.permission_id,
        permission_id=entry.permission_id,
        key=entry.permission_key,
        label=entry.label,
        group=entry.group,
        mode=entry.mode,
        allow=entry.allow,
    )


async def _get_role_or_404(db: AsyncSession, role_ref: str) -> Role:
    role = await get_role_by_ref(db, role_ref)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleWithCountResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("roles.view"))
):
    """List roles with the number of permissions each one allows."""
    result = await db.execute(select(Role).order_by(Role.key))
    roles = result.scalars().all()
    return [
        RoleWithCountResponse(
            id=role.id,
            key=role.key,
            label=role.label,
            created_at=role.created_at,
            updated_at=role.updated_at,
            permission_count=sum(1 for rp in role.role_permissions if rp.allow),
        )
        for role in roles
    ]


@router.get("/permissions", response_model=PermissionCatalogResponse)
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("permissions.view"))
):
    """List the permission catalog, flat and grouped."""
    result = await db.execute(select(Permission).order_by(Permission.group, Permission.key))
    permissions = [PermissionResponse.model_validate(p) for p in result.scalars().all()]

    grouped: dict[str, list[PermissionResponse]] = {}
    for permission in permissions:
        grouped.setdefault(permission.group or "other", []).append(permission)

    return PermissionCatalogResponse(permissions=permissions, grouped=grouped)


# ============================================================================
# Role Matrix Routes
# ============================================================================

@router.get("/roles/{role_ref}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_ref: str,
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("roles.view"))
):
    """Get a role's matrix rows (by role id or key), served from the permission cache."""
    role = await _get_role_or_404(db, role_ref)
    entries = await cache.get(role.id)
    return RolePermissionsResponse(
        role=RoleRef.model_validate(role),
        permissions=[_to_response(entry) for entry in entries],
    )


@router.post("/roles/{role_ref}/permissions", response_model=RolePermissionResponse)
async def set_role_permission(
    role_ref: str,
    assignment: RolePermissionUpsert,
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("roles.edit"))
):
    """Insert or update one matrix cell of a role."""
    role = await _get_role_or_404(db, role_ref)

    permission = await get_permission_by_key(db, assignment.permission_key)
    if not permission:
        raise HTTPException(status_code=404, detail="Permission not found")

    row, changed = await upsert_role_permission(db, role, permission, assignment.mode, assignment.allow)

    await create_audit_log(
        db,
        user_id=principal.user_id,
        action="update",
        resource_type="role_permission",
        resource_id=f"{role.key}:{permission.key}:{assignment.mode.value}",
        details={"allow": assignment.allow, "changed": changed},
        request=request,
    )
    cache.invalidate(role.id)

    return RolePermissionResponse(
        id=permission.id,
        permission_id=permission.id,
        key=permission.key,
        label=permission.label,
        group=permission.group,
        mode=row.mode,
        allow=row.allow,
    )


@router.delete("/roles/{role_ref}/permissions/{permission_key}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_permission(
    role_ref: str,
    permission_key: str,
    request: Request,
    mode: PermissionMode = PermissionMode.ALL,
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("roles.edit"))
):
    """Remove one matrix cell of a role."""
    role = await _get_role_or_404(db, role_ref)

    permission = await get_permission_by_key(db, permission_key)
    if not permission:
        raise HTTPException(status_code=404, detail="Permission not found")

    stmt = delete(RolePermission).where(
        RolePermission.role_id == role.id,
        RolePermission.permission_id == permission.id,
        RolePermission.mode == mode,
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Permission assignment not found")

    await create_audit_log(
        db,
        user_id=principal.user_id,
        action="delete",
        resource_type="role_permission",
        resource_id=f"{role.key}:{permission.key}:{mode.value}",
        request=request,
    )
    cache.invalidate(role.id)

    return None


# ============================================================================
# User Role Routes
# ============================================================================

async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/rbac/users/{user_id}/roles", response_model=UserRolesResponse)
async def list_user_roles(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("roles.view"))
):
    """List the roles assigned to a user."""
    await _get_user_or_404(db, user_id)
    roles = await get_user_roles(db, user_id)
    return UserRolesResponse(user_id=user_id, roles=[RoleRef.model_validate(r) for r in roles])


@router.post("/rbac/users/{user_id}/roles", response_model=UserRolesResponse)
async def assign_user_role(
    user_id: str,
    assignment: UserRoleAssignment,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("roles.assign"))
):
    """Assign a role to a user, or revoke it with `assign: false`."""
    await _get_user_or_404(db, user_id)
    role = await get_role_by_ref(db, assignment.role_key)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")

    current = {r.id for r in await get_user_roles(db, user_id)}
    if assignment.assign and role.id not in current:
        await db.execute(insert(user_roles).values(user_id=user_id, role_id=role.id))
    elif not assignment.assign and role.id in current:
        await db.execute(
            delete(user_roles).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role_id == role.id,
            )
        )

    await create_audit_log(
        db,
        user_id=principal.user_id,
        action="assign" if assignment.assign else "revoke",
        resource_type="user_role",
        resource_id=user_id,
        details={"role": role.key},
        request=request,
    )

    roles = await get_user_roles(db, user_id)
    return UserRolesResponse(user_id=user_id, roles=[RoleRef.model_validate(r) for r in roles])


# ============================================================================
# Cache Control
# ============================================================================

@router.post("/rbac/cache/clear")
async def clear_permission_cache(
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("roles.edit"))
):
    """Drop every permission cache entry."""
    cache.invalidate_all()
    log.info(f"Permission cache cleared by {principal.user_id}")
    return {"success": True, "message": "RBAC cache cleared"}


# ============================================================================
# Admin Control Plane
# ============================================================================

@admin_router.get("/permissions", response_model=PermissionMatrixResponse)
async def get_permission_matrix(
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("permissions.view"))
):
    """
    Snapshot of the `all`-mode matrix as permission key -> role key -> allow.

    Cells without a row are reported as False so that every cell can be
    edited and diffed.
    """
    roles = (await db.execute(select(Role).order_by(Role.key))).scalars().all()
    permission_keys = (await db.execute(select(Permission.key).order_by(Permission.key))).scalars().all()

    matrix = {key: {role.key: False for role in roles} for key in permission_keys}
    for role in roles:
        for entry in await cache.get(role.id):
            if entry.mode == PermissionMode.ALL and entry.permission_key in matrix:
                matrix[entry.permission_key][role.key] = entry.allow

    return PermissionMatrixResponse(roles=[RoleRef.model_validate(r) for r in roles], matrix=matrix)


@admin_router.post(
    "/permissions/bulk-update", response_model=BulkUpdateResponse, response_model_exclude_none=True
)
@limiter.limit(config.BULK_UPDATE_RATE_LIMIT)
async def bulk_update_permissions(
    request: Request,
    payload: BulkUpdateRequest,
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    principal: Principal = Depends(require_permission("roles.edit"))
):
    """Apply a batch of matrix changes."""
    if not payload.updates:
        return BulkUpdateResponse(updated=0, message="no changes")

    updated = await apply_bulk_update(db, payload.updates, cache)

    await create_audit_log(
        db,
        user_id=principal.user_id,
        action="bulk_update",
        resource_type="role_permission",
        details={
            "updated": updated,
            "updates": [u.model_dump(mode="json", by_alias=True) for u in payload.updates],
        },
        request=request,
    )

    return BulkUpdateResponse(updated=updated)
