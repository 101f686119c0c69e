"""Subscription ledger.

This module provides functionality for:
- Creating, editing and deleting shared subscriptions
- Inviting users and turning accepted invitations into memberships
- Leaving and removing members, with ownership transfer
- Splitting the cost equally between members

Every membership change locks the subscription row and recomputes all
shares in the same transaction, so the shares of a subscription always
add up to its cost.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from config import settings_conf
from database import get_store
from errors import (
    ValidationError, NotFoundError, ForbiddenError, AlreadyExistsError,
    AlreadyPendingError, SelfReferenceError, ConstraintViolationError
)
from events import HandleGroup
from models import (
    BillingCycle, InvitationStatus, NotificationType, parse_content,
    SubscriptionInvitationContent, SubscriptionMemberRemovedContent,
    SubscriptionRemovedContent, SubscriptionMemberLeftContent,
    SubscriptionLeftContent, SubscriptionDeletedContent
)
from notifications import NotificationManager

logger = logging.getLogger(__name__)

# User-mutable subscription fields
MUTABLE_FIELDS = {
    'name',
    'cost',
    'due_date',
    'billing_cycle',
    'logo_url'
}

def _to_cost(value: Any) -> Decimal:
    try:
        cost = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Cost must be a number")
    if not cost.is_finite() or cost < 0:
        raise ValidationError("Cost must be zero or more")
    return cost


def _to_name(value: Any) -> str:
    name = (value or '').strip()
    if not name:
        raise ValidationError("Subscription name is required")
    return name


def _to_cycle(value: Any) -> str:
    try:
        return BillingCycle(value).value
    except ValueError:
        raise ValidationError(f"Unknown billing cycle: {value}")


def _to_due_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("Due date must be an ISO date")


class SubscriptionManager:
    """Manager class for subscriptions and their members."""

    def __init__(self, store=None, notifications: Optional[NotificationManager] = None,
                 precision: Optional[int] = None):
        """Initialize the subscription manager.

        Args:
            store: Optional row store. If not provided, will get from database module.
            notifications: Outbox used for membership notifications
            precision: Decimal places kept on member shares
        """
        self.store = store
        self.notifications = notifications or NotificationManager(store)
        if precision is None:
            precision = settings_conf.get('share_precision', 4)
        self.quantum = Decimal(1).scaleb(-int(precision))

    async def ensure_store(self):
        """Ensure we have a row store shared with the outbox."""
        if not self.store:
            self.store = await get_store()
        self.notifications.store = self.notifications.store or self.store

    def split(self, cost: Decimal, count: int) -> Decimal:
        """Equal share of a cost between ``count`` members."""
        if count < 1:
            return Decimal(0)
        return (Decimal(cost) / count).quantize(self.quantum)

    def allocate(self, cost: Decimal, user_ids: List[UUID], owner_id: UUID) -> Dict[UUID, Decimal]:
        """Split a cost between users so the shares add up to it exactly.

        Everyone gets the rounded equal share; the owner, or the first user
        when the owner is not among them, also carries the rounding remainder.
        """
        if not user_ids:
            return {}
        share = self.split(cost, len(user_ids))
        shares = {user_id: share for user_id in user_ids}
        payer = owner_id if owner_id in shares else user_ids[0]
        shares[payer] += Decimal(cost) - share * len(user_ids)
        return shares

    async def _user(self, tx, user_id: UUID) -> Dict[str, Any]:
        user = await tx.find_one('users', {'id': user_id})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def _lock(self, tx, subscription_id: UUID) -> Dict[str, Any]:
        subscription = await tx.lock('subscriptions', {'id': subscription_id})
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    async def _members(self, tx, subscription_id: UUID) -> List[Dict[str, Any]]:
        return await tx.find_many(
            'subscription_members',
            {'subscription_id': subscription_id},
            order_by='created_at'
        )

    async def _rebalance(self, tx, subscription: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Give every member an equal share of the cost.

        Members whose share changes are marked unpaid, except the owner.
        """
        members = await self._members(tx, subscription['id'])
        shares = self.allocate(
            subscription['cost'], [m['user_id'] for m in members], subscription['owner_id']
        )
        result = []
        for member in members:
            share = shares[member['user_id']]
            if Decimal(member['share']) == share:
                result.append(member)
                continue
            patch: Dict[str, Any] = {'share': share}
            if member['user_id'] != subscription['owner_id']:
                patch['paid'] = False
            rows = await tx.update('subscription_members', {'id': member['id']}, patch)
            result.append(rows[0])
        return result

    async def _with_members(self, tx, subscription: Dict[str, Any]) -> Dict[str, Any]:
        members = await self._members(tx, subscription['id'])
        if members:
            users = await tx.find_many('users', {'id': [m['user_id'] for m in members]})
            by_id = {user['id']: user for user in users}
            for member in members:
                member['user'] = by_id.get(member['user_id'])
        subscription['members'] = members
        return subscription

    async def _clear_invitations(self, tx, subscription_id: UUID, invitee_id: Optional[UUID] = None) -> None:
        """Drop pending invitations and their notifications."""
        filters: Dict[str, Any] = {
            'subscription_id': subscription_id,
            'status': InvitationStatus.PENDING.value
        }
        if invitee_id is not None:
            filters['invitee_id'] = invitee_id
        invitations = await tx.delete('invitations', filters)
        invitees = {row['invitee_id'] for row in invitations}
        if invitee_id is not None:
            invitees.add(invitee_id)
        for user_id in invitees:
            await self.notifications.discard(
                tx, user_id, NotificationType.SUBSCRIPTION_INVITATION,
                {'subscriptionId': subscription_id}
            )

    async def create(
        self,
        owner_id: UUID,
        name: str,
        cost: Any,
        due_date: Any = None,
        billing_cycle: str = BillingCycle.MONTHLY.value,
        logo_url: Optional[str] = None,
        guard=None
    ) -> Dict[str, Any]:
        """Create a subscription owned by a user.

        The owner becomes the first member, carrying the whole cost and
        marked as paid.

        Returns:
            The subscription with its ``members``

        Raises:
            ValidationError: If name, cost, cycle or due date are invalid
            NotFoundError: If the owner does not exist
        """
        await self.ensure_store()
        name = _to_name(name)
        cost = _to_cost(cost)
        billing_cycle = _to_cycle(billing_cycle)
        due_date = _to_due_date(due_date)

        async with self.store.transaction() as tx:
            await self._user(tx, owner_id)
            subscription = await tx.insert('subscriptions', {
                'name': name,
                'cost': cost,
                'billing_cycle': billing_cycle,
                'due_date': due_date,
                'owner_id': owner_id,
                'logo_url': logo_url
            })
            await tx.insert('subscription_members', {
                'subscription_id': subscription['id'],
                'user_id': owner_id,
                'share': cost,
                'paid': True
            })
            if guard:
                await guard.check()
            result = await self._with_members(tx, subscription)

        logger.info(f"Created subscription {subscription['id']} ({name}) for {owner_id}")
        return result

    async def update(self, subscription_id: UUID, actor_id: UUID, guard=None, **changes) -> Dict[str, Any]:
        """Edit subscription fields; shares are recomputed when the cost changes.

        Raises:
            ValidationError: If an unknown field or invalid value is given
            NotFoundError: If the subscription does not exist
            ForbiddenError: If the actor is not the owner
        """
        await self.ensure_store()
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        patch: Dict[str, Any] = {}
        if changes.get('name') is not None:
            patch['name'] = _to_name(changes['name'])
        if changes.get('cost') is not None:
            patch['cost'] = _to_cost(changes['cost'])
        if changes.get('billing_cycle') is not None:
            patch['billing_cycle'] = _to_cycle(changes['billing_cycle'])
        if 'due_date' in changes:
            patch['due_date'] = _to_due_date(changes['due_date'])
        if 'logo_url' in changes:
            patch['logo_url'] = changes['logo_url']

        async with self.store.transaction() as tx:
            subscription = await self._lock(tx, subscription_id)
            if subscription['owner_id'] != actor_id:
                raise ForbiddenError("Only the owner can edit the subscription")
            if patch:
                subscription = (await tx.update('subscriptions', {'id': subscription_id}, patch))[0]
            if 'cost' in patch:
                await self._rebalance(tx, subscription)
            if guard:
                await guard.check()
            return await self._with_members(tx, subscription)

    async def invite(
        self,
        subscription_id: UUID,
        friend_id: UUID,
        from_user_id: UUID,
        from_username: Optional[str] = None,
        guard=None
    ) -> Dict[str, Any]:
        """Invite a user to share a subscription.

        Creates a pending invitation and notifies the invitee. Nothing about
        the membership changes until the invitation is accepted.

        Returns:
            The invitation row

        Raises:
            NotFoundError: If the subscription or the invitee does not exist
            ForbiddenError: If the inviter is not the owner
            SelfReferenceError: If the owner invites themselves
            AlreadyExistsError: If the invitee is already a member
            AlreadyPendingError: If an invitation is already pending
        """
        await self.ensure_store()
        try:
            async with self.store.transaction() as tx:
                subscription = await self._lock(tx, subscription_id)
                if subscription['owner_id'] != from_user_id:
                    raise ForbiddenError("Only the owner can invite members")
                if friend_id == from_user_id:
                    raise SelfReferenceError("You are already a member of this subscription")

                inviter = await self._user(tx, from_user_id)
                await self._user(tx, friend_id)

                member = await tx.find_one('subscription_members', {
                    'subscription_id': subscription_id, 'user_id': friend_id
                })
                if member:
                    raise AlreadyExistsError("User is already a member of this subscription")
                pending = await tx.find_one('invitations', {
                    'subscription_id': subscription_id,
                    'invitee_id': friend_id,
                    'status': InvitationStatus.PENDING.value
                })
                if pending:
                    raise AlreadyPendingError("An invitation is already pending for this user")

                invitation = await tx.insert('invitations', {
                    'subscription_id': subscription_id,
                    'inviter_id': from_user_id,
                    'invitee_id': friend_id,
                    'status': InvitationStatus.PENDING.value
                })
                await self.notifications.append(
                    tx,
                    friend_id,
                    SubscriptionInvitationContent(
                        subscription_id=subscription_id,
                        subscription_name=subscription['name'],
                        from_user_id=from_user_id,
                        from_username=from_username or inviter['username'],
                        cost=subscription['cost'],
                        invitation_id=invitation['id']
                    ),
                    metadata={
                        'subscriptionId': str(subscription_id),
                        'fromUserId': str(from_user_id)
                    }
                )
                if guard:
                    await guard.check()

        except ConstraintViolationError:
            raise AlreadyPendingError("An invitation is already pending for this user")

        logger.info(f"Invited {friend_id} to subscription {subscription_id}")
        return invitation

    async def _invitation_from_notification(self, tx, notification_id: UUID, user_id: UUID):
        notification = await tx.find_one('notifications', {
            'id': notification_id,
            'user_id': user_id,
            'type': NotificationType.SUBSCRIPTION_INVITATION.value
        })
        if not notification:
            raise NotFoundError("Invitation not found")
        content = parse_content(notification['type'], notification['content'])
        invitation = await tx.find_one('invitations', {'id': content.invitation_id})
        if not invitation or invitation['status'] != InvitationStatus.PENDING.value:
            raise NotFoundError("Invitation is no longer available")
        return notification, invitation

    async def accept_invitation(self, notification_id: UUID, user_id: UUID, guard=None) -> Dict[str, Any]:
        """Join a subscription through its invitation notification.

        All shares are recomputed, so the new member and the existing ones
        each owe cost / member count.

        Returns:
            The subscription with its ``members``

        Raises:
            NotFoundError: If the notification, invitation or subscription is gone
            AlreadyExistsError: If the user is already a member
        """
        await self.ensure_store()
        try:
            async with self.store.transaction() as tx:
                notification, invitation = await self._invitation_from_notification(
                    tx, notification_id, user_id
                )
                subscription = await self._lock(tx, invitation['subscription_id'])

                member = await tx.find_one('subscription_members', {
                    'subscription_id': subscription['id'], 'user_id': user_id
                })
                if member:
                    raise AlreadyExistsError("You are already a member of this subscription")

                await tx.insert('subscription_members', {
                    'subscription_id': subscription['id'],
                    'user_id': user_id,
                    'share': Decimal(0),
                    'paid': False
                })
                await tx.update('invitations', {'id': invitation['id']}, {
                    'status': InvitationStatus.ACCEPTED.value
                })
                await self._rebalance(tx, subscription)
                await self.notifications.discard(
                    tx, user_id, NotificationType.SUBSCRIPTION_INVITATION,
                    {'subscriptionId': subscription['id']}
                )
                if guard:
                    await guard.check()
                result = await self._with_members(tx, subscription)

        except ConstraintViolationError:
            raise AlreadyExistsError("You are already a member of this subscription")

        logger.info(f"{user_id} joined subscription {subscription['id']}")
        return result

    async def decline_invitation(self, notification_id: UUID, user_id: UUID, guard=None) -> None:
        """Decline an invitation and drop its notification."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            notification = await tx.find_one('notifications', {
                'id': notification_id,
                'user_id': user_id,
                'type': NotificationType.SUBSCRIPTION_INVITATION.value
            })
            if not notification:
                raise NotFoundError("Invitation not found")
            content = parse_content(notification['type'], notification['content'])
            await tx.update(
                'invitations',
                {'id': content.invitation_id, 'status': InvitationStatus.PENDING.value},
                {'status': InvitationStatus.DECLINED.value}
            )
            await tx.delete('notifications', {'id': notification_id})
            if guard:
                await guard.check()

        logger.info(f"{user_id} declined invitation {content.invitation_id}")

    async def list_invitations(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Get a user's invitation notifications, newest first."""
        await self.ensure_store()
        return await self.store.find_many(
            'notifications',
            {'user_id': user_id, 'type': NotificationType.SUBSCRIPTION_INVITATION.value},
            order_by='-created_at'
        )

    async def leave(self, subscription_id: UUID, user_id: UUID, guard=None) -> Optional[Dict[str, Any]]:
        """Leave a subscription.

        An owner leaving hands ownership to the earliest-joined remaining
        member. The last member leaving deletes the subscription.

        Returns:
            The subscription with its remaining ``members``, or None when it was deleted

        Raises:
            NotFoundError: If the subscription does not exist or the user is not a member
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            subscription = await self._lock(tx, subscription_id)
            members = await self._members(tx, subscription_id)
            if not any(m['user_id'] == user_id for m in members):
                raise NotFoundError("You are not a member of this subscription")

            remaining = [m for m in members if m['user_id'] != user_id]
            if not remaining:
                await self._delete(tx, subscription)
                if guard:
                    await guard.check()
                logger.info(f"Last member left, deleted subscription {subscription_id}")
                return None

            if subscription['owner_id'] == user_id:
                new_owner = remaining[0]['user_id']
                subscription = (await tx.update(
                    'subscriptions', {'id': subscription_id}, {'owner_id': new_owner}
                ))[0]
                logger.info(f"Ownership of {subscription_id} moved to {new_owner}")

            await self._clear_invitations(tx, subscription_id, invitee_id=user_id)
            await tx.delete('subscription_members', {
                'subscription_id': subscription_id, 'user_id': user_id
            })
            await self._rebalance(tx, subscription)

            leaver = await self._user(tx, user_id)
            for member in remaining:
                await self.notifications.append(tx, member['user_id'], SubscriptionMemberLeftContent(
                    subscription_id=subscription_id,
                    subscription_name=subscription['name'],
                    leaving_member_id=user_id,
                    leaving_member_username=leaver['username'],
                    message=f"{leaver['username']} has left {subscription['name']}"
                ))
            await self.notifications.append(tx, user_id, SubscriptionLeftContent(
                subscription_id=subscription_id,
                subscription_name=subscription['name'],
                message=f"You have left {subscription['name']}"
            ))
            if guard:
                await guard.check()
            result = await self._with_members(tx, subscription)

        logger.info(f"{user_id} left subscription {subscription_id}")
        return result

    async def remove_member(self, subscription_id: UUID, member_id: UUID, owner_id: UUID, guard=None) -> Dict[str, Any]:
        """Remove a member from a subscription as its owner.

        Returns:
            The subscription with its remaining ``members``

        Raises:
            NotFoundError: If the subscription does not exist or the user is not a member
            ForbiddenError: If the caller is not the owner
            ValidationError: If the owner tries to remove themselves
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            subscription = await self._lock(tx, subscription_id)
            if subscription['owner_id'] != owner_id:
                raise ForbiddenError("Only the owner can remove members")
            if member_id == owner_id:
                raise ValidationError("The owner cannot remove themselves, leave instead")

            removed = await tx.delete('subscription_members', {
                'subscription_id': subscription_id, 'user_id': member_id
            })
            if not removed:
                raise NotFoundError("Member not found")

            await self._clear_invitations(tx, subscription_id, invitee_id=member_id)
            remaining = await self._rebalance(tx, subscription)

            removed_user = await self._user(tx, member_id)
            for member in remaining:
                await self.notifications.append(tx, member['user_id'], SubscriptionMemberRemovedContent(
                    subscription_id=subscription_id,
                    subscription_name=subscription['name'],
                    removed_member_id=member_id,
                    removed_member_username=removed_user['username'],
                    message=(
                        f"{removed_user['username']} has been removed from "
                        f"{subscription['name']} by the owner"
                    )
                ))
            await self.notifications.append(tx, member_id, SubscriptionRemovedContent(
                subscription_id=subscription_id,
                subscription_name=subscription['name'],
                message=f"You have been removed from {subscription['name']} by the owner"
            ))
            if guard:
                await guard.check()
            result = await self._with_members(tx, subscription)

        logger.info(f"{owner_id} removed {member_id} from subscription {subscription_id}")
        return result

    async def _delete(self, tx, subscription: Dict[str, Any]) -> None:
        members = await self._members(tx, subscription['id'])
        for member in members:
            await self.notifications.append(tx, member['user_id'], SubscriptionDeletedContent(
                subscription_id=subscription['id'],
                subscription_name=subscription['name'],
                message=f"The subscription {subscription['name']} has been deleted"
            ))
        await self._clear_invitations(tx, subscription['id'])
        await tx.delete('invitations', {'subscription_id': subscription['id']})
        await tx.delete('subscription_members', {'subscription_id': subscription['id']})
        await tx.delete('subscriptions', {'id': subscription['id']})

    async def delete(self, subscription_id: UUID, actor_id: Optional[UUID] = None, guard=None) -> None:
        """Delete a subscription, notifying every member first.

        Raises:
            NotFoundError: If the subscription does not exist
            ForbiddenError: If an actor is given and is not the owner
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            subscription = await self._lock(tx, subscription_id)
            if actor_id is not None and subscription['owner_id'] != actor_id:
                raise ForbiddenError("Only the owner can delete the subscription")
            await self._delete(tx, subscription)
            if guard:
                await guard.check()

        logger.info(f"Deleted subscription {subscription_id}")

    async def recalculate_shares(self, subscription_id: UUID, guard=None) -> List[Dict[str, Any]]:
        """Split the cost equally between the current members."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            subscription = await self._lock(tx, subscription_id)
            members = await self._rebalance(tx, subscription)
            if guard:
                await guard.check()
        return members

    async def get(self, subscription_id: UUID, viewer_id: UUID) -> Dict[str, Any]:
        """Get a subscription with its members, visible to members only.

        Raises:
            NotFoundError: If the subscription does not exist
            ForbiddenError: If the viewer is not a member
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            subscription = await tx.find_one('subscriptions', {'id': subscription_id})
            if not subscription:
                raise NotFoundError("Subscription not found")
            subscription = await self._with_members(tx, subscription)
        if not any(m['user_id'] == viewer_id for m in subscription['members']):
            raise ForbiddenError("You are not a member of this subscription")
        return subscription

    async def get_members(self, subscription_id: UUID, viewer_id: UUID) -> List[Dict[str, Any]]:
        """Get the members of a subscription, each with its ``user``."""
        subscription = await self.get(subscription_id, viewer_id)
        return subscription['members']

    async def get_user_subscriptions(self, user_id: UUID, viewer_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        """Get every subscription a user belongs to, newest first.

        Raises:
            ForbiddenError: If a viewer other than the user asks
        """
        if viewer_id is not None and viewer_id != user_id:
            raise ForbiddenError("You can only list your own subscriptions")
        await self.ensure_store()
        async with self.store.transaction() as tx:
            memberships = await tx.find_many('subscription_members', {'user_id': user_id})
            if not memberships:
                return []
            subscriptions = await tx.find_many(
                'subscriptions',
                {'id': [m['subscription_id'] for m in memberships]},
                order_by='-created_at'
            )
            return [await self._with_members(tx, s) for s in subscriptions]

    def shares_balanced(self, subscription: Dict[str, Any]) -> bool:
        """Check that member shares add up to the cost."""
        total = sum((Decimal(m['share']) for m in subscription.get('members', [])), Decimal(0))
        return total == Decimal(subscription['cost'])

    async def watch(self, user_id: UUID, callback: Callable) -> HandleGroup:
        """Call back on changes to a user's memberships and owned subscriptions.

        Share recomputation touches every member row, so joins and leaves
        of other members reach the user through their own row.
        """
        await self.ensure_store()
        return HandleGroup([
            self.store.subscribe_to_changes(
                'subscription_members', callback, filters={'user_id': user_id}
            ),
            self.store.subscribe_to_changes(
                'subscriptions', callback, filters={'owner_id': user_id}
            )
        ])


__all__ = ['SubscriptionManager', 'MUTABLE_FIELDS']
