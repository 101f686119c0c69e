"""Authentication API endpoints."""

from fastapi import APIRouter, Request, Depends, Security
from typing import Optional
from uuid import UUID
from pydantic import BaseModel

from auth import AuthenticatedUser, get_current_user, get_optional_user
from errors import SplitError, ForbiddenError
from models import User
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

class RegisterRequest(BaseModel):
    """Request model for registering or updating a wallet account."""
    wallet_address: str
    username: Optional[str] = None
    email: Optional[str] = None

class LoginRequest(BaseModel):
    """Request model for login with a connected wallet."""
    wallet_address: str

class LoginResponse(BaseModel):
    """Response model for login."""
    token: str
    expires_at: str
    user: User

@router.post("/register", response_model=LoginResponse)
async def register(
    body: RegisterRequest,
    request: Request,
    caller: Optional[AuthenticatedUser] = Security(get_optional_user),
    services: Services = Depends(get_services)
):
    """Register a wallet and open a session.

    Updating the profile of an existing wallet requires a session for it.
    """
    try:
        existing = await services.users.get_by_wallet(body.wallet_address)
        if existing and (caller is None or caller.id != existing['id']):
            raise ForbiddenError("Sign in with this wallet to update its profile")
        user = await services.users.register_or_update(
            body.wallet_address, body.username, body.email
        )
        session = await services.auth.create_session(user['id'], request)
        return {"token": session["token"], "expires_at": session["expires_at"], "user": user}
    except SplitError as e:
        raise to_http(e)

@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    services: Services = Depends(get_services)
):
    """Open a session for an existing wallet."""
    try:
        session = await services.auth.login(body.wallet_address, request)
        user = await services.users.get(UUID(session["user_id"]))
        return {"token": session["token"], "expires_at": session["expires_at"], "user": user}
    except SplitError as e:
        raise to_http(e)

@router.post("/logout")
async def logout(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Log out the current user by revoking their session."""
    try:
        await services.auth.logout(user.id)
        return {"success": True}
    except SplitError as e:
        raise to_http(e)

@router.get("/verify")
async def verify_token(user: AuthenticatedUser = Security(get_current_user)):
    """Verify the current session token."""
    return {
        "valid": True,
        "user_id": str(user.id)
    }

# Export the router
__all__ = ['router']
