"""
Policy evaluation.

Pure functions deciding whether a principal holds a permission, and the mode
resolution used to materialize a principal's permission keys from the
role/permission matrix. Nothing here performs I/O or mutates state.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Protocol

from app.features.permissions.models import SUPER_ADMIN_ROLE, PermissionMode


@dataclass(frozen=True)
class RolePermissionEntry:
    """Immutable snapshot of one matrix row, as held by the permission cache."""
    role_id: str
    permission_id: str
    permission_key: str
    mode: PermissionMode
    allow: bool
    label: str = ""
    group: Optional[str] = None


class PermissionHolder(Protocol):
    trusted: ClassVar[bool]
    role_keys: frozenset[str]
    permission_keys: frozenset[str]


@dataclass(frozen=True)
class Principal:
    """
    The authenticated actor of one request.

    Built by the server from a verified session token and the permission
    matrix; never persisted.
    """
    trusted: ClassVar[bool] = True

    user_id: str
    role_keys: frozenset[str] = field(default_factory=frozenset)
    permission_keys: frozenset[str] = field(default_factory=frozenset)
    mode: PermissionMode = PermissionMode.ALL
    two_factor_verified: bool = False

    @property
    def is_super_admin(self) -> bool:
        return SUPER_ADMIN_ROLE in self.role_keys


# ============================================================================
# Permission Checks
# ============================================================================

def has_permission(principal: Optional[PermissionHolder], permission_key: str) -> bool:
    """
    Check a single permission.

    super_admin satisfies every check; a missing principal satisfies none.
    """
    if principal is None:
        return False
    if SUPER_ADMIN_ROLE in principal.role_keys:
        return True
    return permission_key in principal.permission_keys


def has_any_permission(principal: Optional[PermissionHolder], permission_keys: Iterable[str]) -> bool:
    if principal is None:
        return False
    if SUPER_ADMIN_ROLE in principal.role_keys:
        return True
    return any(key in principal.permission_keys for key in permission_keys)


def has_all_permissions(principal: Optional[PermissionHolder], permission_keys: Iterable[str]) -> bool:
    if principal is None:
        return False
    if SUPER_ADMIN_ROLE in principal.role_keys:
        return True
    return all(key in principal.permission_keys for key in permission_keys)


# ============================================================================
# Mode Resolution
# ============================================================================

def is_granted(entries: Iterable[RolePermissionEntry], mode: PermissionMode) -> bool:
    """
    Decide one (role, permission) cell for the active mode.

    Granted iff an allowed `all` row or an allowed row for `mode` exists. A
    mode-specific deny never revokes an allowed `all` row.
    """
    mode = PermissionMode(mode)
    return any(
        entry.allow and (entry.mode == PermissionMode.ALL or entry.mode == mode)
        for entry in entries
    )


def resolve_permission_keys(
    entries: Iterable[RolePermissionEntry],
    mode: PermissionMode = PermissionMode.ALL,
) -> frozenset[str]:
    """
    Return every permission key granted by `entries` under `mode`.

    Example:
        >>> entries = [
        ...     RolePermissionEntry("r", "p", "tasks.take", PermissionMode.ALL, True),
        ...     RolePermissionEntry("r", "p", "tasks.take", PermissionMode.TASK_DOER, False),
        ... ]
        >>> sorted(resolve_permission_keys(entries, PermissionMode.TASK_DOER))
        ['tasks.take']
    """
    by_key: dict[str, list[RolePermissionEntry]] = {}
    for entry in entries:
        by_key.setdefault(entry.permission_key, []).append(entry)
    return frozenset(key for key, rows in by_key.items() if is_granted(rows, mode))


def build_principal(
    user_id: str,
    role_entries: Mapping[str, Iterable[RolePermissionEntry]],
    mode: PermissionMode = PermissionMode.ALL,
    two_factor_verified: bool = False,
) -> Principal:
    """
    Materialize a principal.

    Args:
        user_id: Authenticated user id
        role_entries: Role key -> that role's matrix rows
        mode: Active account mode
        two_factor_verified: Whether 2FA was completed in this session
    """
    permission_keys: set[str] = set()
    for entries in role_entries.values():
        permission_keys |= resolve_permission_keys(entries, mode)
    return Principal(
        user_id=user_id,
        role_keys=frozenset(role_entries.keys()),
        permission_keys=frozenset(permission_keys),
        mode=PermissionMode(mode),
        two_factor_verified=two_factor_verified,
    )
