"""
Settings API routes.

Admins read the whole tree and replace one category at a time; every write
refreshes the process settings cache before responding.
"""
from typing import Annotated, Any, Dict
from fastapi import APIRouter, Body, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.enforcement.dependencies import require_permission
from app.features.enforcement.gates import (
    DEFAULT_PASSWORD_POLICY,
    PASSWORD_POLICY_PATH,
    check_password_policy,
    is_login_allowed,
    is_registration_allowed,
)
from app.features.permissions.dependencies import create_audit_log
from app.features.permissions.evaluator import Principal
from app.features.settings.cache import SettingsCache
from app.features.settings.dependencies import get_settings_cache, get_settings_snapshot
from app.features.settings.schemas import (
    PasswordCheckRequest,
    PasswordCheckResponse,
    PublicSettingsResponse,
    SettingResponse,
    SettingsResponse,
    SettingUpdateResponse,
)
from app.features.settings.store import read_categories, upsert_category
from app.features.settings.tree import SettingsTree, build_tree
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

CATEGORY_PATTERN = r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$"

# Flags exposed to anonymous clients
PUBLIC_FEATURE_FLAGS = {
    "tasks": "features.tasks.moduleEnabled",
    "orders": "features.orders.moduleEnabled",
    "transactions": "features.transactions.moduleEnabled",
    "withdrawals": "features.transactions.withdrawalsEnabled",
}


@router.get("", response_model=SettingsResponse)
async def get_settings(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("settings.view"))
):
    """Get the settings tree and its category rows, read from the database."""
    categories = await read_categories(db)
    return SettingsResponse(settings=build_tree(categories.items()), categories=categories)


@router.get("/public", response_model=PublicSettingsResponse)
async def get_public_settings(tree: Annotated[SettingsTree, Depends(get_settings_snapshot)]):
    """Settings anonymous clients need before signing in."""
    return PublicSettingsResponse(
        registration_enabled=is_registration_allowed(tree),
        login_enabled=is_login_allowed(tree),
        features={name: tree.get_flag(path) for name, path in PUBLIC_FEATURE_FLAGS.items()},
        password_policy=tree.get_policy(PASSWORD_POLICY_PATH, DEFAULT_PASSWORD_POLICY),
    )


@router.post("/password-policy/check", response_model=PasswordCheckResponse)
async def check_password(
    payload: PasswordCheckRequest,
    tree: Annotated[SettingsTree, Depends(get_settings_snapshot)],
):
    """Report every password policy rule the candidate password violates."""
    result = check_password_policy(tree, payload.password)
    return PasswordCheckResponse(valid=result.valid, errors=result.errors, policy=result.policy)


@router.put("/{category}", response_model=SettingUpdateResponse)
async def update_settings_category(
    request: Request,
    category: Annotated[str, Path(pattern=CATEGORY_PATTERN, max_length=100)],
    value: Annotated[Dict[str, Any], Body()],
    db: AsyncSession = Depends(get_db),
    cache: SettingsCache = Depends(get_settings_cache),
    principal: Principal = Depends(require_permission("settings.edit"))
):
    """Replace the value of one settings category."""
    setting, created = await upsert_category(db, category, value, actor_id=principal.user_id)

    await create_audit_log(
        db,
        user_id=principal.user_id,
        action="create" if created else "update",
        resource_type="setting",
        resource_id=category,
        details={"value": value},
        request=request,
    )
    await cache.refresh()

    return SettingUpdateResponse(setting=SettingResponse.model_validate(setting), created=created)
