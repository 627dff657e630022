"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from app.features.permissions.models import PermissionMode
from app.features.permissions.schemas import RoleRef


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: str
    name: str
    is_active: bool
    verified: bool
    email_verified: bool
    two_factor_enabled: bool
    balance: Decimal
    mode: PermissionMode
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CurrentUserResponse(BaseModel):
    """Profile plus the authorization state resolved for this session."""
    user: UserResponse
    roles: list[RoleRef]
    permissions: list[str]
    mode: PermissionMode
    two_factor_verified: bool = Field(..., serialization_alias="twoFactorVerified")
