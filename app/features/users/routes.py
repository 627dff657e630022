"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.dependencies import get_principal
from app.features.permissions.evaluator import Principal
from app.features.permissions.schemas import RoleRef
from app.features.permissions.store import get_user_roles
from app.features.users.models import User
from app.features.users.schemas import CurrentUserResponse, UserResponse
from app.features.users.dependencies import get_current_user


router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    principal: Annotated[Principal, Depends(get_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get current authenticated user's profile, roles and resolved permissions."""
    roles = await get_user_roles(db, user.id)
    return CurrentUserResponse(
        user=UserResponse.model_validate(user),
        roles=[RoleRef.model_validate(role) for role in roles],
        permissions=sorted(principal.permission_keys),
        mode=principal.mode,
        two_factor_verified=principal.two_factor_verified,
    )
