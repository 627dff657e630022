"""Helper functions shared across tests."""
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import PermissionMode, Role, user_roles
from app.features.users.auth import create_session_token
from app.features.users.models import User


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def create_user(
    db: AsyncSession,
    email: str,
    role_keys: Iterable[str] = (),
    **attrs,
) -> User:
    """Create a user holding the given roles."""
    attrs.setdefault("balance", Decimal("0"))
    attrs.setdefault("mode", PermissionMode.ALL)
    user = User(email=email, name=email.split("@")[0], **attrs)
    db.add(user)
    await db.flush()

    keys = list(role_keys)
    if keys:
        roles = (await db.execute(select(Role).where(Role.key.in_(keys)))).scalars().all()
        for role in roles:
            await db.execute(insert(user_roles).values(user_id=user.id, role_id=role.id))

    await db.commit()
    return user


def auth_headers(user: User, two_factor_verified: bool = False) -> dict[str, str]:
    token = create_session_token(user.id, mode=user.mode, two_factor_verified=two_factor_verified)
    return {"Authorization": f"Bearer {token}"}


__all__ = ["FakeClock", "create_user", "auth_headers"]
