"""
Role, Permission and RolePermission models for the marketplace RBAC matrix.

This module implements:
- A fixed set of named roles (super_admin, admin, moderator, task_giver, task_doer)
- A stable, dot-namespaced permission catalog (e.g. "orders.refund")
- The role/permission matrix with a per-mode allow flag
- User-role assignments
- Audit log rows for every admin mutation
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, JSON, String, Table, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


SUPER_ADMIN_ROLE = "super_admin"


class PermissionMode(str, enum.Enum):
    """
    Operational context a grant applies to.

    `ALL` is an umbrella: an allowed `ALL` row grants the permission under
    every mode, whatever the mode-specific rows say.
    """
    ALL = "all"
    TASK_DOER = "taskDoer"
    TASK_GIVER = "taskGiver"


# ============================================================================
# Association Tables
# ============================================================================

# User-Role relationship
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=datetime.now),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission catalog entry.

    Examples:
    - key="orders.refund", group="orders"
    - key="roles.edit", group="rbac"
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(150), nullable=False)
    group: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.key!r})>"


class Role(Base, TimestampMixin):
    """
    Named role. Examples: super_admin, admin, moderator, task_giver, task_doer
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    key: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)

    role_permissions: Mapped[list["RolePermission"]] = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, key={self.key!r})>"


class RolePermission(Base, TimestampMixin):
    """
    One cell of the permission matrix.

    At most one row exists per (role, permission, mode).
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", "mode", name="uq_role_permission_mode"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mode: Mapped[PermissionMode] = mapped_column(
        Enum(
            PermissionMode,
            native_enum=False,
            length=16,
            values_callable=lambda modes: [m.value for m in modes],
        ),
        nullable=False,
        default=PermissionMode.ALL,
    )
    allow: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    role: Mapped["Role"] = relationship("Role", back_populates="role_permissions")
    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<RolePermission(role_id={self.role_id}, permission_id={self.permission_id}, "
            f"mode={self.mode.value}, allow={self.allow})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for permission and settings changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(150), nullable=True, index=True)

    # Context
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
