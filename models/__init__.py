"""Domain models shared by the managers and the API."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .notifications import (
    NotificationType, NotificationContent, ACTIONABLE_TYPES, parse_content,
    FriendRequestContent, FriendAcceptedContent, FriendRemovedContent,
    PaymentReminderContent, PaymentReceivedContent,
    SubscriptionInvitationContent, SubscriptionMemberRemovedContent,
    SubscriptionRemovedContent, SubscriptionMemberLeftContent,
    SubscriptionLeftContent, SubscriptionDeletedContent
)


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BillingCycle(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class User(BaseModel):
    id: UUID
    wallet_address: Optional[str] = None
    email: Optional[str] = None
    username: str
    avatar_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Friendship(BaseModel):
    id: UUID
    user_id: UUID
    friend_id: UUID
    status: FriendshipStatus
    created_at: datetime
    updated_at: datetime
    requester: Optional[User] = None


class SubscriptionMember(BaseModel):
    id: UUID
    subscription_id: UUID
    user_id: UUID
    share: Decimal
    paid: bool = False
    created_at: datetime
    user: Optional[User] = None


class Subscription(BaseModel):
    id: UUID
    name: str
    cost: Decimal
    billing_cycle: str
    due_date: Optional[date] = None
    owner_id: UUID
    logo_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    members: List[SubscriptionMember] = Field(default_factory=list)


class Invitation(BaseModel):
    id: UUID
    subscription_id: UUID
    inviter_id: UUID
    invitee_id: UUID
    status: InvitationStatus
    created_at: datetime


class Notification(BaseModel):
    id: UUID
    user_id: UUID
    type: NotificationType
    content: Dict[str, Any]
    metadata: Optional[Dict[str, Any]] = None
    read: bool = False
    created_at: datetime


class Payment(BaseModel):
    id: UUID
    subscription_id: UUID
    sender_id: UUID
    receiver_id: UUID
    amount: Decimal
    currency: str
    status: PaymentStatus
    transaction_hash: Optional[str] = None
    created_at: datetime
    updated_at: datetime


__all__ = [
    'User', 'Friendship', 'FriendshipStatus', 'Subscription', 'SubscriptionMember',
    'BillingCycle', 'Invitation', 'InvitationStatus', 'Notification', 'NotificationType',
    'NotificationContent', 'ACTIONABLE_TYPES', 'parse_content', 'Payment', 'PaymentStatus',
    'FriendRequestContent', 'FriendAcceptedContent', 'FriendRemovedContent',
    'PaymentReminderContent', 'PaymentReceivedContent', 'SubscriptionInvitationContent',
    'SubscriptionMemberRemovedContent', 'SubscriptionRemovedContent',
    'SubscriptionMemberLeftContent', 'SubscriptionLeftContent', 'SubscriptionDeletedContent'
]
