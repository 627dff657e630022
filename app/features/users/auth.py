"""
Session token issuing and verification.

Tokens are HS256 JWTs signed with `JWT_SECRET`. Besides the subject they
carry the user's roles, resolved permission keys, active mode and 2FA state
so that clients can render UI hints without a round trip; the server never
trusts those claims and re-derives permissions from the matrix.
"""
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, status

from app.core import config
from app.features.permissions.models import PermissionMode, Role


def create_session_token(
    user_id: str,
    roles: Iterable[Role] = (),
    permissions: Iterable[str] = (),
    mode: PermissionMode = PermissionMode.ALL,
    two_factor_verified: bool = False,
    expires_in: int | None = None,
) -> str:
    """
    Issue a signed session token.

    Args:
        user_id: Subject of the token
        roles: Roles assigned to the user
        permissions: Resolved permission keys, for client-side hints only
        mode: Active account mode
        two_factor_verified: Whether 2FA was completed for this session
        expires_in: Lifetime in seconds (defaults to SESSION_TOKEN_TTL_SECONDS)

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else config.SESSION_TOKEN_TTL_SECONDS
    payload = {
        "sub": user_id,
        "roles": [{"id": role.id, "key": role.key, "label": role.label} for role in roles],
        "permissions": sorted(set(permissions)),
        "mode": PermissionMode(mode).value,
        "tfa": two_factor_verified,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a session token and return its payload.

    Raises:
        HTTPException: 401 if the token is expired, badly signed or malformed
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
