"""
Pydantic schemas for the settings API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class SettingResponse(BaseModel):
    """One settings category row."""
    key: str
    value: Any
    description: Optional[str] = None
    updated_by: Optional[str] = Field(None, serialization_alias="updatedBy")
    updated_at: datetime = Field(..., serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)


class SettingsResponse(BaseModel):
    """
    The settings tree, plus the raw category rows it was built from.

    `settings` is what gates and clients resolve paths against; `categories`
    is what the admin console diffs and writes back category by category.
    """
    settings: Dict[str, Any]
    categories: Dict[str, Any]


class SettingUpdateResponse(BaseModel):
    setting: SettingResponse
    created: bool
    message: str = "Settings updated successfully"


class PublicSettingsResponse(BaseModel):
    registration_enabled: bool = Field(..., serialization_alias="registrationEnabled")
    login_enabled: bool = Field(..., serialization_alias="loginEnabled")
    features: Dict[str, bool]
    password_policy: Dict[str, Any] = Field(..., serialization_alias="passwordPolicy")


class PasswordCheckRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=256)


class PasswordCheckResponse(BaseModel):
    valid: bool
    errors: List[str]
    policy: Dict[str, Any]
