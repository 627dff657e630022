"""
User model with ULID primary keys.

Only the account attributes the enforcement gates read are modelled here;
profile, balance bookkeeping and the rest of the account lifecycle belong to
the marketplace domain services.
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Boolean, DateTime, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.models import PermissionMode


class User(Base, TimestampMixin):
    """
    Marketplace account.

    `mode` is the account's active operating mode; it selects which
    mode-specific rows of the permission matrix apply on top of the `all` rows.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    mode: Mapped[PermissionMode] = mapped_column(
        Enum(
            PermissionMode,
            native_enum=False,
            length=16,
            values_callable=lambda modes: [m.value for m in modes],
        ),
        default=PermissionMode.ALL,
        nullable=False,
    )

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    roles: Mapped[list["Role"]] = relationship(  # type: ignore
        "Role",
        secondary="user_roles",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
