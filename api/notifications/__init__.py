"""Notifications API endpoints."""

from fastapi import APIRouter, Depends, Security
from typing import List, Optional
from uuid import UUID

from auth import AuthenticatedUser, get_current_user
from errors import SplitError
from models import Notification
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

@router.get("", response_model=List[Notification])
async def list_notifications(
    unread_only: bool = False,
    limit: Optional[int] = None,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the authenticated user's notifications, newest first."""
    try:
        return await services.notifications.list(user.id, unread_only=unread_only, limit=limit)
    except SplitError as e:
        raise to_http(e)

@router.get("/unread-count")
async def unread_count(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the number of unread notifications."""
    try:
        return {"count": await services.notifications.unread_count(user.id)}
    except SplitError as e:
        raise to_http(e)

@router.post("/read-all")
async def mark_all_read(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Mark every notification as read."""
    try:
        updated = await services.notifications.mark_all_read(user.id, guard=user.guard)
        return {"updated": updated}
    except SplitError as e:
        raise to_http(e)

@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Mark one notification as read."""
    try:
        return await services.notifications.mark_read(notification_id, user.id, guard=user.guard)
    except SplitError as e:
        raise to_http(e)

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Delete one notification."""
    try:
        await services.notifications.delete(notification_id, user.id, guard=user.guard)
        return {"success": True}
    except SplitError as e:
        raise to_http(e)

@router.delete("")
async def clear_notifications(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Delete every notification of the authenticated user."""
    try:
        deleted = await services.notifications.clear_all(user.id, guard=user.guard)
        return {"deleted": deleted}
    except SplitError as e:
        raise to_http(e)

# Export the router
__all__ = ['router']
