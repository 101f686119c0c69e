"""Friendship API endpoints."""

from fastapi import APIRouter, Depends, Security
from typing import List
from uuid import UUID
from pydantic import BaseModel

from auth import AuthenticatedUser, get_current_user
from errors import SplitError
from models import Friendship, User
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/friends",
    tags=["Friends"]
)

class FriendRequestBody(BaseModel):
    """Request model for sending a friend request."""
    identifier: str

@router.get("", response_model=List[User])
async def list_friends(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the authenticated user's friends."""
    try:
        return await services.friends.list_friends(user.id)
    except SplitError as e:
        raise to_http(e)

@router.get("/requests", response_model=List[Friendship])
async def list_pending_requests(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get friend requests waiting for the authenticated user."""
    try:
        return await services.friends.list_pending(user.id)
    except SplitError as e:
        raise to_http(e)

@router.get("/requests/sent", response_model=List[Friendship])
async def list_sent_requests(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get friend requests the authenticated user is waiting on."""
    try:
        return await services.friends.list_sent(user.id)
    except SplitError as e:
        raise to_http(e)

@router.post("/requests", response_model=Friendship)
async def send_request(
    body: FriendRequestBody,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Send a friend request by wallet address or email."""
    try:
        return await services.friends.send_request(user.id, body.identifier, guard=user.guard)
    except SplitError as e:
        raise to_http(e)

@router.post("/requests/{request_id}/accept", response_model=Friendship)
async def accept_request(
    request_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Accept a friend request."""
    try:
        return await services.friends.respond(request_id, True, user.id, guard=user.guard)
    except SplitError as e:
        raise to_http(e)

@router.post("/requests/{request_id}/reject", response_model=Friendship)
async def reject_request(
    request_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Reject a friend request."""
    try:
        return await services.friends.respond(request_id, False, user.id, guard=user.guard)
    except SplitError as e:
        raise to_http(e)

@router.delete("/{friend_id}")
async def remove_friend(
    friend_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Remove a friend or cancel a request."""
    try:
        await services.friends.remove(user.id, friend_id, guard=user.guard)
        return {"success": True}
    except SplitError as e:
        raise to_http(e)

# Export the router
__all__ = ['router']
