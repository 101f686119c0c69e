"""Profile management endpoints."""

from fastapi import APIRouter, Depends, Query, Security
from typing import Optional
from pydantic import BaseModel

from auth import AuthenticatedUser, get_current_user
from errors import SplitError, NotFoundError
from models import User
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/users",
    tags=["Users"]
)

class ProfileUpdate(BaseModel):
    """Model for profile updates."""
    username: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None

@router.get("/me", response_model=User)
async def get_profile(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the authenticated user's profile."""
    try:
        return await services.users.get(user.id)
    except SplitError as e:
        raise to_http(e)

@router.patch("/me", response_model=User)
async def update_profile(
    update: ProfileUpdate,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Update the authenticated user's profile."""
    try:
        return await services.users.update_profile(
            user.id, **update.model_dump(exclude_unset=True)
        )
    except SplitError as e:
        raise to_http(e)

@router.get("/lookup", response_model=User)
async def lookup_user(
    identifier: str = Query(..., min_length=1),
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Find a user by wallet address or email."""
    try:
        found = await services.users.resolve(identifier)
        if not found:
            raise NotFoundError("User not found")
        return found
    except SplitError as e:
        raise to_http(e)

# Export the router
__all__ = ['router']
