"""
Enforcement gates.

Each gate is a pure decision over a principal or account and a settings
snapshot. A failing gate raises `EnforcementError`; a passing gate returns
without side effects. The FastAPI wrappers in `dependencies.py` fetch the
snapshot and call these.
"""
import enum
import re
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol

from app.features.enforcement.errors import EnforcementError, ErrorCode
from app.features.permissions.evaluator import (
    PermissionHolder,
    has_all_permissions,
    has_any_permission,
    has_permission,
)
from app.features.settings.tree import SettingsTree
from app.utils import get_logger


log = get_logger(__name__)


# Used when a limit is not configured
UNLIMITED = sys.maxsize

PASSWORD_POLICY_PATH = "security.passwordPolicy"

DEFAULT_PASSWORD_POLICY: dict[str, Any] = {
    "minLength": 8,
    "requireUppercase": True,
    "requireLowercase": True,
    "requireNumbers": True,
    "requireSymbols": True,
}

_SYMBOLS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")


class AccountMode(str, enum.Enum):
    TASK_GIVER = "task_giver"
    TASK_COMPLETER = "task_completer"


class Account(Protocol):
    id: str
    verified: bool
    email_verified: bool
    two_factor_enabled: bool
    balance: Decimal


@dataclass
class PasswordCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)
    policy: dict[str, Any] = field(default_factory=dict)


def _require_trusted(principal: Optional[PermissionHolder]) -> None:
    if principal is not None and not getattr(type(principal), "trusted", False):
        raise TypeError(f"{type(principal).__name__} is advisory and cannot be used for enforcement")


# ============================================================================
# Feature flags and limits
# ============================================================================

def check_feature_flag(
    tree: SettingsTree,
    path: str,
    message: str = "This feature is currently disabled",
) -> None:
    if not tree.get_flag(path):
        log.warning(f"Feature flag check failed: {path}")
        raise EnforcementError(ErrorCode.FEATURE_DISABLED, message, feature=path)


def check_limit(
    tree: SettingsTree,
    path: str,
    current: float,
    message: str = "Limit exceeded",
) -> None:
    limit = tree.get_limit(path, UNLIMITED)
    if current >= limit:
        log.warning(f"Limit exceeded: {path} limit={limit} current={current}")
        raise EnforcementError(ErrorCode.LIMIT_EXCEEDED, message, limit=limit, current=current)


# ============================================================================
# Password policy
# ============================================================================

def check_password_policy(tree: SettingsTree, password: str) -> PasswordCheck:
    """
    Validate a password against `security.passwordPolicy`.

    All violated rules are reported, not only the first one.
    """
    policy = tree.get_policy(PASSWORD_POLICY_PATH, DEFAULT_PASSWORD_POLICY)
    errors: list[str] = []

    min_length = int(policy.get("minLength", 0))
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters long")
    if policy.get("requireUppercase") and not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if policy.get("requireLowercase") and not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if policy.get("requireNumbers") and not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if policy.get("requireSymbols") and not _SYMBOLS.search(password):
        errors.append("Password must contain at least one special character")

    return PasswordCheck(valid=not errors, errors=errors, policy=policy)


def enforce_password_policy(tree: SettingsTree, password: str) -> PasswordCheck:
    result = check_password_policy(tree, password)
    if not result.valid:
        log.warning(f"Password policy validation failed: {result.errors}")
        raise EnforcementError(
            ErrorCode.PASSWORD_POLICY_VIOLATION,
            "Password does not meet security requirements",
            errors=result.errors,
            policy=result.policy,
        )
    return result


# ============================================================================
# Account requirements
# ============================================================================

def check_mode_requirements(tree: SettingsTree, account: Account, mode: AccountMode) -> None:
    mode = AccountMode(mode)

    if mode is AccountMode.TASK_GIVER:
        if tree.get_policy("modes.taskGiver.requireVerification", False) and not account.verified:
            log.warning(f"Task giver verification required for user {account.id}")
            raise EnforcementError(
                ErrorCode.VERIFICATION_REQUIRED,
                "Account verification is required to create tasks",
            )

        min_balance = tree.get_limit("modes.taskGiver.minBalance", 0)
        if account.balance < min_balance:
            log.warning(f"Insufficient balance for task giver {account.id}: {account.balance} < {min_balance}")
            raise EnforcementError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"Minimum balance of {min_balance} required to create tasks",
                required=min_balance,
                current=account.balance,
            )

    elif mode is AccountMode.TASK_COMPLETER:
        required = tree.get_policy("modes.taskCompleter.requireEmailVerification", False)
        if required and not account.email_verified:
            log.warning(f"Email verification required for task completer {account.id}")
            raise EnforcementError(
                ErrorCode.EMAIL_VERIFICATION_REQUIRED,
                "Email verification is required to complete tasks",
            )


def check_email_verification(tree: SettingsTree, account: Account) -> None:
    if not tree.get_policy("security.authentication.emailVerificationRequired", False):
        return
    if not account.email_verified:
        log.warning(f"Email verification required for user {account.id}")
        raise EnforcementError(
            ErrorCode.EMAIL_VERIFICATION_REQUIRED,
            "Please verify your email address to access this feature",
        )


def check_two_factor(tree: SettingsTree, account: Account, two_factor_verified: bool) -> None:
    """
    Require 2FA when `security.authentication.twoFactorRequired` is set.

    Args:
        two_factor_verified: Whether the code was confirmed in the current session
    """
    if not tree.get_policy("security.authentication.twoFactorRequired", False):
        return
    if not account.two_factor_enabled:
        log.warning(f"2FA required but not enabled for user {account.id}")
        raise EnforcementError(
            ErrorCode.TWO_FACTOR_REQUIRED,
            "Two-factor authentication is required to access this feature",
        )
    if not two_factor_verified:
        log.warning(f"2FA not verified in session for user {account.id}")
        raise EnforcementError(
            ErrorCode.TWO_FACTOR_VERIFICATION_REQUIRED,
            "Please verify your two-factor authentication code",
        )


# ============================================================================
# Permissions
# ============================================================================

def _deny(principal: Optional[PermissionHolder], detail: str, **context: Any) -> EnforcementError:
    if principal is None:
        return EnforcementError(ErrorCode.AUTH_REQUIRED, "Authentication required")
    return EnforcementError(ErrorCode.INSUFFICIENT_PERMISSIONS, detail, **context)


def check_permission(principal: Optional[PermissionHolder], permission_key: str) -> None:
    _require_trusted(principal)
    if not has_permission(principal, permission_key):
        raise _deny(principal, f"Permission '{permission_key}' required", permission=permission_key)


def check_any_permission(principal: Optional[PermissionHolder], permission_keys: Iterable[str]) -> None:
    keys = list(permission_keys)
    _require_trusted(principal)
    if not has_any_permission(principal, keys):
        raise _deny(principal, f"One of {keys} required", permissions=keys)


def check_all_permissions(principal: Optional[PermissionHolder], permission_keys: Iterable[str]) -> None:
    keys = list(permission_keys)
    _require_trusted(principal)
    if not has_all_permissions(principal, keys):
        raise _deny(principal, f"All of {keys} required", permissions=keys)


# ============================================================================
# Public switches
# ============================================================================

def is_registration_allowed(tree: SettingsTree) -> bool:
    return bool(tree.get_policy("general.allowRegistration", True))


def is_login_allowed(tree: SettingsTree) -> bool:
    return not tree.get_policy("maintenance.enabled", False)
