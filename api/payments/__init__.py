"""Payment API endpoints."""

from decimal import Decimal
from fastapi import APIRouter, Depends, Security
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from auth import AuthenticatedUser, get_current_user
from errors import SplitError
from models import Notification, Payment, PaymentStatus
from ..dependencies import Services, get_services
from ..errors import to_http

router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)

class PaymentCreate(BaseModel):
    """Request model for recording a payment sent by the authenticated user."""
    subscription_id: UUID
    receiver_id: UUID
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None
    transaction_hash: Optional[str] = None

class PaymentStatusUpdate(BaseModel):
    """Request model for settling a pending payment."""
    status: PaymentStatus
    transaction_hash: Optional[str] = None

class ReminderRequest(BaseModel):
    """Request model for a payment reminder."""
    subscription_id: UUID
    receiver_id: UUID
    amount: Decimal = Field(..., gt=0)

@router.get("/history", response_model=List[Payment])
async def payment_history(
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Get payments the authenticated user sent or received."""
    try:
        return await services.payments.history(user.id)
    except SplitError as e:
        raise to_http(e)

@router.post("", response_model=Payment)
async def record_payment(
    body: PaymentCreate,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Record a payment from the authenticated user."""
    try:
        return await services.payments.record_payment(
            body.subscription_id,
            user.id,
            body.receiver_id,
            body.amount,
            currency=body.currency,
            transaction_hash=body.transaction_hash,
            guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

@router.patch("/{payment_id}", response_model=Payment)
async def update_payment_status(
    payment_id: UUID,
    body: PaymentStatusUpdate,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Mark a pending payment as completed or failed."""
    try:
        return await services.payments.update_status(
            payment_id,
            body.status.value,
            transaction_hash=body.transaction_hash,
            actor_id=user.id,
            guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

@router.post("/reminders", response_model=Notification)
async def send_reminder(
    body: ReminderRequest,
    user: AuthenticatedUser = Security(get_current_user),
    services: Services = Depends(get_services)
):
    """Remind a member of what they owe."""
    try:
        return await services.payments.send_reminder(
            body.subscription_id, user.id, body.receiver_id, body.amount, guard=user.guard
        )
    except SplitError as e:
        raise to_http(e)

# Export the router
__all__ = ['router']
