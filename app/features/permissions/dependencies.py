"""
Permission dependencies.

Implements:
- Access to the process-wide permission cache held on `app.state`
- Per-request principal materialization from the verified session token
- Audit logging helper
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.cache import PermissionCache
from app.features.permissions.evaluator import Principal, build_principal
from app.features.permissions.models import AuditLog
from app.features.permissions.store import get_user_roles
from app.features.users.dependencies import get_optional_user, get_token_payload
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def get_permission_cache(request: Request) -> PermissionCache:
    return request.app.state.permission_cache


async def get_principal(
    payload: Annotated[dict | None, Depends(get_token_payload)],
    user: Annotated[User | None, Depends(get_optional_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[PermissionCache, Depends(get_permission_cache)],
) -> Optional[Principal]:
    """
    Build the request principal, or None for anonymous requests.

    Role membership comes from the database and grants from the permission
    cache; the `roles`/`permissions` claims of the token are ignored here.
    """
    if payload is None or user is None:
        return None

    roles = await get_user_roles(db, user.id)
    role_entries = {role.key: await cache.get(role.id) for role in roles}

    principal = build_principal(
        user.id,
        role_entries,
        mode=user.mode,
        two_factor_verified=bool(payload.get("tfa", False)),
    )
    log.debug(f"Principal for user {user.id}: roles={sorted(principal.role_keys)}")
    return principal


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "update", "bulk_update", "assign")
        resource_type: Type of resource (e.g., "role_permission", "setting")
        resource_id: ID of the resource
        details: Additional details
        request: Incoming request, for client IP and user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id}")

    return audit_log
