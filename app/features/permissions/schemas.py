"""
Pydantic schemas for permission management.

Request and response models for roles, the permission catalog, the
role/permission matrix and the bulk-update endpoint. Wire names are
camelCase, as the admin console sends them.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.models import PermissionMode


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for a permission catalog entry."""
    id: str
    key: str
    label: str
    group: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PermissionCatalogResponse(BaseModel):
    """Flat catalog plus the same entries grouped by `group`."""
    permissions: List[PermissionResponse]
    grouped: Dict[str, List[PermissionResponse]]


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    key: str
    label: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithCountResponse(RoleResponse):
    permission_count: int = Field(0, serialization_alias="permissionCount")


class RoleRef(BaseModel):
    id: str
    key: str
    label: str

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Matrix Schemas
# ============================================================================

class RolePermissionResponse(BaseModel):
    """One matrix row of a role."""
    id: str = Field(..., description="Permission id")
    permission_id: str = Field(..., serialization_alias="permissionId")
    key: str
    label: str
    group: Optional[str] = None
    mode: PermissionMode
    allow: bool


class RolePermissionsResponse(BaseModel):
    role: RoleRef
    permissions: List[RolePermissionResponse]


class RolePermissionUpsert(BaseModel):
    """Schema for setting one matrix cell of a role."""
    permission_key: str = Field(..., alias="permissionKey", min_length=1, max_length=100)
    mode: PermissionMode = PermissionMode.ALL
    allow: bool = True

    model_config = ConfigDict(populate_by_name=True)


class PermissionUpdate(BaseModel):
    """One tuple of a bulk update."""
    role: str = Field(..., min_length=1, max_length=50, description="Role key")
    permission_key: str = Field(..., alias="permissionKey", min_length=1, max_length=100)
    allow: bool
    mode: PermissionMode = PermissionMode.ALL

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("role", "permission_key")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value must not be blank")
        return v


class BulkUpdateRequest(BaseModel):
    updates: List[PermissionUpdate] = Field(default_factory=list)


class BulkUpdateResponse(BaseModel):
    updated: int
    message: Optional[str] = None


# Permission key -> role key -> allow (mode "all")
PermissionMatrix = Dict[str, Dict[str, bool]]


class PermissionMatrixResponse(BaseModel):
    roles: List[RoleRef]
    matrix: PermissionMatrix


# ============================================================================
# User Role Schemas
# ============================================================================

class UserRoleAssignment(BaseModel):
    role_key: str = Field(..., alias="roleKey", min_length=1, max_length=50)
    assign: bool = True

    model_config = ConfigDict(populate_by_name=True)


class UserRolesResponse(BaseModel):
    user_id: str = Field(..., serialization_alias="userId")
    roles: List[RoleRef]

