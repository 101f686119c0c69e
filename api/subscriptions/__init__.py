"""Subscription API endpoints."""

from datetime import date
from decimal import Decimal
from fastapi import APIRouter, Depends, Security
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from auth import AuthenticatedUser, get_current_user
from errors import SplitError
from models import BillingCycle, Invitation, Notification, Subscription, SubscriptionMember
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/subscriptions",
    tags=["Subscriptions"]
)

class SubscriptionCreate(BaseModel):
    """Request model for creating a subscription."""
    name: str = Field(..., min_length=1)
    cost: Decimal = Field(..., ge=0)
    due_date: Optional[date] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    logo_url: Optional[str] = None

class SubscriptionUpdate(BaseModel):
    """Request model for editing a subscription."""
    name: Optional[str] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    billing_cycle: Optional[BillingCycle] = None
    logo_url: Optional[str] = None

class InviteRequest(BaseModel):
    """Request model for inviting a user."""
    user_id: UUID

@router.get("", response_model=List[Subscription])
async def list_subscriptions(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get every subscription the authenticated user belongs to."""
    try:
        return await services.subscriptions.get_user_subscriptions(user.id, viewer_id=user.id)
    except SplitError as e:
        raise to_http(e)

@router.post("", response_model=Subscription)
async def create_subscription(
    body: SubscriptionCreate,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Create a subscription owned by the authenticated user."""
    try:
        return await services.subscriptions.create(
            user.id,
            body.name,
            body.cost,
            due_date=body.due_date,
            billing_cycle=body.billing_cycle.value,
            logo_url=body.logo_url,
            guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

@router.get("/invitations", response_model=List[Notification])
async def list_invitations(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the authenticated user's subscription invitations."""
    try:
        return await services.subscriptions.list_invitations(user.id)
    except SplitError as e:
        raise to_http(e)

@router.post("/invitations/{notification_id}/accept", response_model=Subscription)
async def accept_invitation(
    notification_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Join a subscription through its invitation notification."""
    try:
        return await services.subscriptions.accept_invitation(
            notification_id, user.id, guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

@router.post("/invitations/{notification_id}/decline")
async def decline_invitation(
    notification_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Decline a subscription invitation."""
    try:
        await services.subscriptions.decline_invitation(notification_id, user.id, guard=user.guard)
        return {"success": True}
    except SplitError as e:
        raise to_http(e)

@router.get("/{subscription_id}", response_model=Subscription)
async def get_subscription(
    subscription_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get a subscription the authenticated user belongs to."""
    try:
        return await services.subscriptions.get(subscription_id, user.id)
    except SplitError as e:
        raise to_http(e)

@router.patch("/{subscription_id}", response_model=Subscription)
async def update_subscription(
    subscription_id: UUID,
    body: SubscriptionUpdate,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Edit a subscription as its owner."""
    changes = body.model_dump(exclude_unset=True)
    if changes.get('billing_cycle') is not None:
        changes['billing_cycle'] = changes['billing_cycle'].value
    try:
        return await services.subscriptions.update(
            subscription_id, user.id, guard=user.guard, **changes
        )
    except SplitError as e:
        raise to_http(e)

@router.delete("/{subscription_id}")
async def delete_subscription(
    subscription_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Delete a subscription as its owner."""
    try:
        await services.subscriptions.delete(subscription_id, user.id, guard=user.guard)
        return {"success": True}
    except SplitError as e:
        raise to_http(e)

@router.get("/{subscription_id}/members", response_model=List[SubscriptionMember])
async def get_members(
    subscription_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get the members of a subscription."""
    try:
        return await services.subscriptions.get_members(subscription_id, user.id)
    except SplitError as e:
        raise to_http(e)

@router.post("/{subscription_id}/invitations", response_model=Invitation)
async def invite(
    subscription_id: UUID,
    body: InviteRequest,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Invite a user to share a subscription."""
    try:
        return await services.subscriptions.invite(
            subscription_id, body.user_id, user.id, guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

@router.post("/{subscription_id}/leave")
async def leave_subscription(
    subscription_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Leave a subscription; the last member leaving deletes it."""
    try:
        result = await services.subscriptions.leave(subscription_id, user.id, guard=user.guard)
        return {
            "success": True,
            "deleted": result is None,
            "owner_id": str(result['owner_id']) if result else None
        }
    except SplitError as e:
        raise to_http(e)

@router.delete("/{subscription_id}/members/{member_id}", response_model=Subscription)
async def remove_member(
    subscription_id: UUID,
    member_id: UUID,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Remove a member as the subscription's owner."""
    try:
        return await services.subscriptions.remove_member(
            subscription_id, member_id, user.id, guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

# Export the router
__all__ = ['router']
