from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, TypeAdapter
from pydantic.alias_generators import to_camel


# Amounts travel as JSON numbers inside notification content
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used='json')]


class NotificationType(str, Enum):
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPTED = "friend_accepted"
    FRIEND_REMOVED = "friend_removed"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_RECEIVED = "payment_received"
    SUBSCRIPTION_INVITATION = "subscription_invitation"
    SUBSCRIPTION_MEMBER_REMOVED = "subscription_member_removed"
    SUBSCRIPTION_REMOVED = "subscription_removed"
    SUBSCRIPTION_MEMBER_LEFT = "subscription_member_left"
    SUBSCRIPTION_LEFT = "subscription_left"
    SUBSCRIPTION_DELETED = "subscription_deleted"


# Notifications the recipient answers; they are deleted once answered
ACTIONABLE_TYPES = {
    NotificationType.FRIEND_REQUEST,
    NotificationType.SUBSCRIPTION_INVITATION,
}


class _Content(BaseModel):
    """Stored with camelCase keys, built with snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode='json', exclude={'type'})


class FriendRequestContent(_Content):
    type: Literal['friend_request'] = 'friend_request'
    sender_id: UUID
    sender_username: str
    sender_wallet_address: Optional[str] = None


class FriendAcceptedContent(_Content):
    type: Literal['friend_accepted'] = 'friend_accepted'
    sender_id: UUID
    sender_username: str
    sender_wallet_address: Optional[str] = None


class FriendRemovedContent(_Content):
    type: Literal['friend_removed'] = 'friend_removed'
    sender_id: UUID
    sender_username: str
    message: str


class PaymentReminderContent(_Content):
    type: Literal['payment_reminder'] = 'payment_reminder'
    sender_id: UUID
    sender_username: str
    sender_wallet_address: Optional[str] = None
    subscription_id: UUID
    subscription_name: str
    amount: Amount


class PaymentReceivedContent(_Content):
    type: Literal['payment_received'] = 'payment_received'
    sender_id: UUID
    sender_username: str
    sender_wallet_address: Optional[str] = None
    subscription_id: UUID
    subscription_name: str
    amount: Amount
    transaction_hash: Optional[str] = None


class SubscriptionInvitationContent(_Content):
    type: Literal['subscription_invitation'] = 'subscription_invitation'
    subscription_id: UUID
    subscription_name: str
    from_user_id: UUID
    from_username: str
    cost: Amount
    invitation_id: UUID


class SubscriptionMemberRemovedContent(_Content):
    type: Literal['subscription_member_removed'] = 'subscription_member_removed'
    subscription_id: UUID
    subscription_name: str
    removed_member_id: UUID
    removed_member_username: str
    message: str


class SubscriptionRemovedContent(_Content):
    type: Literal['subscription_removed'] = 'subscription_removed'
    subscription_id: UUID
    subscription_name: str
    message: str


class SubscriptionMemberLeftContent(_Content):
    type: Literal['subscription_member_left'] = 'subscription_member_left'
    subscription_id: UUID
    subscription_name: str
    leaving_member_id: UUID
    leaving_member_username: str
    message: str


class SubscriptionLeftContent(_Content):
    type: Literal['subscription_left'] = 'subscription_left'
    subscription_id: UUID
    subscription_name: str
    message: str


class SubscriptionDeletedContent(_Content):
    type: Literal['subscription_deleted'] = 'subscription_deleted'
    subscription_id: UUID
    subscription_name: str
    message: str


NotificationContent = Annotated[
    Union[
        FriendRequestContent,
        FriendAcceptedContent,
        FriendRemovedContent,
        PaymentReminderContent,
        PaymentReceivedContent,
        SubscriptionInvitationContent,
        SubscriptionMemberRemovedContent,
        SubscriptionRemovedContent,
        SubscriptionMemberLeftContent,
        SubscriptionLeftContent,
        SubscriptionDeletedContent,
    ],
    Field(discriminator='type'),
]

_content_adapter = TypeAdapter(NotificationContent)


def parse_content(notification_type: str, content: Dict[str, Any]) -> NotificationContent:
    """Rebuild the typed content of a stored notification."""
    return _content_adapter.validate_python({**content, 'type': notification_type})
