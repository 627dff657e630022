"""
Client-side advisory permission cache.

Decodes the session token's claims, without verifying the signature, into an
`AdvisoryPrincipal` so that a UI can hide controls the user cannot use. The
projection is never sent anywhere and the server gates refuse it; it only
mirrors the 60 s lifetime of the server-side cache.
"""
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import ClassVar, Optional

import jwt

from app.core import config
from app.core.cache import TTLCache
from app.features.permissions import evaluator
from app.features.permissions.models import PermissionMode
from app.utils import get_logger


log = get_logger(__name__)

PRINCIPAL_KEY = "principal"


@dataclass(frozen=True)
class AdvisoryPrincipal:
    """Unverified projection of a session token. Not valid for enforcement."""
    trusted: ClassVar[bool] = False

    user_id: str
    role_keys: frozenset[str] = field(default_factory=frozenset)
    permission_keys: frozenset[str] = field(default_factory=frozenset)
    mode: PermissionMode = PermissionMode.ALL
    two_factor_verified: bool = False


def decode_claims(token: str) -> AdvisoryPrincipal:
    """
    Project the claims of a session token.

    Raises:
        jwt.InvalidTokenError: If the token is malformed or expired
    """
    payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    try:
        mode = PermissionMode(payload.get("mode", PermissionMode.ALL.value))
    except ValueError:
        mode = PermissionMode.ALL
    return AdvisoryPrincipal(
        user_id=str(payload.get("sub", "")),
        role_keys=frozenset(
            role["key"] for role in payload.get("roles", []) if isinstance(role, dict) and "key" in role
        ),
        permission_keys=frozenset(payload.get("permissions", [])),
        mode=mode,
        two_factor_verified=bool(payload.get("tfa", False)),
    )


class AdvisoryPermissionCache:
    """
    Args:
        ttl: Lifetime of a decoded projection in seconds
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        ttl: float = config.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLCache[AdvisoryPrincipal] = TTLCache(ttl=ttl, clock=clock)
        self._token: Optional[str] = None

    def set_token(self, token: Optional[str]) -> None:
        """Replace the session token, e.g. after sign-in or a token refresh."""
        self._token = token
        self._cache.invalidate_all()

    def clear(self) -> None:
        self.set_token(None)

    def refresh(self) -> None:
        """Drop the cached projection so the next read decodes the token again."""
        self._cache.invalidate_all()

    def principal(self) -> Optional[AdvisoryPrincipal]:
        """The decoded projection, or None when signed out or the token is unusable."""
        if self._token is None:
            return None
        cached = self._cache.lookup(PRINCIPAL_KEY)
        if cached is not None:
            return cached
        try:
            principal = decode_claims(self._token)
        except jwt.InvalidTokenError as e:
            log.warning(f"Ignoring unusable session token: {e}")
            return None
        return self._cache.store(PRINCIPAL_KEY, principal)

    def has_permission(self, permission_key: str) -> bool:
        return evaluator.has_permission(self.principal(), permission_key)

    def has_any_permission(self, permission_keys: Iterable[str]) -> bool:
        return evaluator.has_any_permission(self.principal(), permission_keys)

    def has_all_permissions(self, permission_keys: Iterable[str]) -> bool:
        return evaluator.has_all_permissions(self.principal(), permission_keys)
