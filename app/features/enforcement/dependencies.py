"""
FastAPI dependencies wrapping the enforcement gates.

Each factory returns a dependency that fetches the request's settings
snapshot and/or principal and runs one gate. Gates are composed on a router
or a route through `dependencies=`:

    router = APIRouter(
        prefix="/tasks",
        dependencies=pipeline(
            enforce_feature_flag("features.tasks.moduleEnabled", "Tasks module is disabled"),
            require_permission("tasks.view"),
        ),
    )

FastAPI runs them in order and the first failing gate ends the request.
"""
import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Annotated, Any, Optional, Union

from fastapi import Depends, Request

from app.features.enforcement import gates
from app.features.enforcement.errors import EnforcementError, ErrorCode
from app.features.enforcement.gates import AccountMode, PasswordCheck
from app.features.permissions.dependencies import get_principal
from app.features.permissions.evaluator import Principal
from app.features.settings.dependencies import get_settings_snapshot
from app.features.settings.tree import SettingsTree
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


Snapshot = Annotated[SettingsTree, Depends(get_settings_snapshot)]
OptionalPrincipal = Annotated[Optional[Principal], Depends(get_principal)]
CurrentUser = Annotated[User, Depends(get_current_user)]

CurrentValue = Callable[[Request, Optional[Principal]], Union[float, Awaitable[float]]]


def pipeline(*dependencies: Callable[..., Any]) -> list[Any]:
    """Wrap gate dependencies for a router's or route's `dependencies=`."""
    return [Depends(dependency) for dependency in dependencies]


# ============================================================================
# Settings Gates
# ============================================================================

def enforce_feature_flag(path: str, message: str = "This feature is currently disabled"):
    """
    Require the feature flag at `path` to be enabled.

    Raises 403 FEATURE_DISABLED otherwise.
    """
    async def feature_flag_dependency(tree: Snapshot) -> None:
        gates.check_feature_flag(tree, path, message)

    return feature_flag_dependency


def enforce_limit(path: str, current_value: CurrentValue, message: str = "Limit exceeded"):
    """
    Require the caller's current count to be below the limit at `path`.

    Args:
        path: Settings path of the limit
        current_value: Returns the current count for the request; may be async
        message: Error message on rejection
    """
    async def limit_dependency(request: Request, tree: Snapshot, principal: OptionalPrincipal) -> None:
        current = current_value(request, principal)
        if inspect.isawaitable(current):
            current = await current
        gates.check_limit(tree, path, current, message)

    return limit_dependency


def validate_password_policy(fields: tuple[str, ...] = ("password", "newPassword")):
    """
    Check the first of `fields` present in the JSON body against the password
    policy. Bodies without any of them pass through.
    """
    async def password_policy_dependency(request: Request, tree: Snapshot) -> Optional[PasswordCheck]:
        try:
            body = await request.json()
        except ValueError:
            # Not JSON: left to body validation
            return None
        if not isinstance(body, dict):
            return None
        password = next((body[name] for name in fields if body.get(name) is not None), None)
        if password is None or password == "":
            return None
        if not isinstance(password, str):
            raise EnforcementError(
                ErrorCode.PASSWORD_POLICY_VIOLATION,
                "Password does not meet security requirements",
                errors=["Password must be a string"],
            )
        return gates.enforce_password_policy(tree, password)

    return password_policy_dependency


def enforce_mode_requirements(mode: AccountMode):
    mode = AccountMode(mode)

    async def mode_requirements_dependency(tree: Snapshot, user: CurrentUser) -> User:
        gates.check_mode_requirements(tree, user, mode)
        return user

    return mode_requirements_dependency


def enforce_email_verification():
    async def email_verification_dependency(tree: Snapshot, user: CurrentUser) -> User:
        gates.check_email_verification(tree, user)
        return user

    return email_verification_dependency


def enforce_2fa():
    async def two_factor_dependency(tree: Snapshot, user: CurrentUser, principal: OptionalPrincipal) -> User:
        gates.check_two_factor(tree, user, principal is not None and principal.two_factor_verified)
        return user

    return two_factor_dependency


# ============================================================================
# Permission Gates
# ============================================================================

def require_permission(permission_key: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/orders/{order_id}/refund")
        async def refund_order(
            order_id: str,
            principal: Principal = Depends(require_permission("orders.refund"))
        ):
            ...

    Raises:
        EnforcementError: 401 AUTH_REQUIRED without a session,
            403 INSUFFICIENT_PERMISSIONS without the permission
    """
    async def permission_dependency(principal: OptionalPrincipal) -> Principal:
        gates.check_permission(principal, permission_key)
        return principal

    return permission_dependency


def require_any_permission(permission_keys: Iterable[str]):
    keys = list(permission_keys)

    async def permission_dependency(principal: OptionalPrincipal) -> Principal:
        gates.check_any_permission(principal, keys)
        return principal

    return permission_dependency


def require_all_permissions(permission_keys: Iterable[str]):
    keys = list(permission_keys)

    async def permission_dependency(principal: OptionalPrincipal) -> Principal:
        gates.check_all_permissions(principal, keys)
        return principal

    return permission_dependency
