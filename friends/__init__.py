"""Friendship graph.

Friendships are stored once per unordered pair of users. The row keeps the
requester in ``user_id`` and the recipient in ``friend_id``; ``pair_key``
holds the canonical pair and is unique, so two users can never have more
than one row between them.

Lifecycle:
    pending -> accepted | rejected   (recipient answers)
    rejected -> pending               (either side sends a new request)
    any -> removed                    (hard delete)
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from database import get_store
from errors import (
    NotFoundError, ForbiddenError, ValidationError, AlreadyPendingError,
    SelfReferenceError, ConstraintViolationError
)
from events import ListenerHandle
from models import (
    FriendshipStatus, NotificationType,
    FriendRequestContent, FriendAcceptedContent, FriendRemovedContent
)
from notifications import NotificationManager
from users import UserManager

logger = logging.getLogger(__name__)


def pair_key(a: UUID, b: UUID) -> str:
    """Canonical key of an unordered user pair."""
    first, second = sorted((str(a), str(b)))
    return f"{first}:{second}"


class FriendManager:
    """Manager class for friend requests and the friend list."""

    def __init__(self, store=None, users: Optional[UserManager] = None,
                 notifications: Optional[NotificationManager] = None):
        self.store = store
        self.users = users or UserManager(store)
        self.notifications = notifications or NotificationManager(store)

    async def ensure_store(self):
        """Ensure we have a row store shared with the helper managers."""
        if not self.store:
            self.store = await get_store()
        self.users.store = self.users.store or self.store
        self.notifications.store = self.notifications.store or self.store

    async def _user(self, tx, user_id: UUID) -> Dict[str, Any]:
        user = await tx.find_one('users', {'id': user_id})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def send_request(self, requester_id: UUID, identifier: str, guard=None) -> Dict[str, Any]:
        """Send a friend request to the user owning a wallet address or email.

        Sending to someone who is already a friend is a no-op that returns
        the existing friendship. A rejected request is re-opened in place.

        Args:
            requester_id: The user sending the request
            identifier: Wallet address or email of the recipient
            guard: Optional identity guard checked before commit

        Returns:
            The friendship row

        Raises:
            SelfReferenceError: If the identifier resolves to the requester
            NotFoundError: If no user matches the identifier
            AlreadyPendingError: If a request between the two is pending
        """
        await self.ensure_store()
        identifier = (identifier or '').strip()
        if not identifier:
            raise ValidationError("Wallet address or email is required")

        try:
            async with self.store.transaction() as tx:
                requester = await self._user(tx, requester_id)
                if identifier in (requester['wallet_address'], requester['email']) or (
                    requester['email'] and identifier.lower() == requester['email']
                ):
                    raise SelfReferenceError("You cannot add yourself as a friend")

                target = await self.users.resolve(identifier)
                if not target:
                    raise NotFoundError("User not found")
                if target['id'] == requester_id:
                    raise SelfReferenceError("You cannot add yourself as a friend")

                key = pair_key(requester_id, target['id'])
                existing = await tx.find_one('friendships', {'pair_key': key})

                if existing and existing['status'] == FriendshipStatus.ACCEPTED.value:
                    logger.info(f"{requester_id} and {target['id']} are already friends")
                    return existing
                if existing and existing['status'] == FriendshipStatus.PENDING.value:
                    raise AlreadyPendingError("A friend request is already pending")

                if existing:
                    rows = await tx.update('friendships', {'id': existing['id']}, {
                        'user_id': requester_id,
                        'friend_id': target['id'],
                        'status': FriendshipStatus.PENDING.value
                    })
                    friendship = rows[0]
                else:
                    friendship = await tx.insert('friendships', {
                        'user_id': requester_id,
                        'friend_id': target['id'],
                        'pair_key': key,
                        'status': FriendshipStatus.PENDING.value
                    })

                await self.notifications.append(tx, target['id'], FriendRequestContent(
                    sender_id=requester_id,
                    sender_username=requester['username'],
                    sender_wallet_address=requester['wallet_address']
                ))
                if guard:
                    await guard.check()

        except ConstraintViolationError:
            # Lost a race with the other side creating the same pair
            raise AlreadyPendingError("A friend request is already pending")

        logger.info(f"Friend request {friendship['id']} sent by {requester_id}")
        return friendship

    async def respond(self, request_id: UUID, accept: bool, responder_id: UUID, guard=None) -> Dict[str, Any]:
        """Accept or reject a pending friend request.

        Raises:
            NotFoundError: If the request does not exist
            ForbiddenError: If the responder is not the recipient
            ValidationError: If the request is no longer pending
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            request = await tx.find_one('friendships', {'id': request_id})
            if not request:
                raise NotFoundError("Friend request not found")
            if request['friend_id'] != responder_id:
                raise ForbiddenError("Only the recipient can answer a friend request")
            if request['status'] != FriendshipStatus.PENDING.value:
                raise ValidationError("Friend request is no longer pending")

            status = FriendshipStatus.ACCEPTED if accept else FriendshipStatus.REJECTED
            rows = await tx.update('friendships', {'id': request_id}, {'status': status.value})

            await self.notifications.discard(
                tx, responder_id, NotificationType.FRIEND_REQUEST,
                {'senderId': request['user_id']}
            )

            if accept:
                responder = await self._user(tx, responder_id)
                await self.notifications.append(tx, request['user_id'], FriendAcceptedContent(
                    sender_id=responder_id,
                    sender_username=responder['username'],
                    sender_wallet_address=responder['wallet_address']
                ))
            if guard:
                await guard.check()

        logger.info(f"Friend request {request_id} {status.value}")
        return rows[0]

    async def accept_request(self, request_id: UUID, responder_id: UUID, guard=None) -> Dict[str, Any]:
        return await self.respond(request_id, True, responder_id, guard)

    async def reject_request(self, request_id: UUID, responder_id: UUID, guard=None) -> Dict[str, Any]:
        return await self.respond(request_id, False, responder_id, guard)

    async def remove(self, user_id: UUID, friend_id: UUID, guard=None) -> None:
        """Remove the relationship between two users, whatever its status.

        Subscription memberships are left untouched.

        Raises:
            NotFoundError: If the two users have no relationship
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            deleted = await tx.delete('friendships', {'pair_key': pair_key(user_id, friend_id)})
            if not deleted:
                raise NotFoundError("Friendship not found")

            user = await self._user(tx, user_id)
            await self.notifications.append(tx, friend_id, FriendRemovedContent(
                sender_id=user_id,
                sender_username=user['username'],
                message=f"{user['username']} has removed you from their friends list."
            ))
            if guard:
                await guard.check()

        logger.info(f"{user_id} removed {friend_id} from friends")

    async def list_friends(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Get the accepted friends of a user as user rows, one per friend."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            sent = await tx.find_many('friendships', {
                'user_id': user_id, 'status': FriendshipStatus.ACCEPTED.value
            })
            received = await tx.find_many('friendships', {
                'friend_id': user_id, 'status': FriendshipStatus.ACCEPTED.value
            })
            friend_ids = []
            for row in sent + received:
                other = row['friend_id'] if row['user_id'] == user_id else row['user_id']
                if other not in friend_ids:
                    friend_ids.append(other)
            if not friend_ids:
                return []
            friends = await tx.find_many('users', {'id': friend_ids})

        return sorted(friends, key=lambda user: user['username'].lower())

    async def list_pending(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Get pending requests addressed to a user, with the requester attached."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            requests = await tx.find_many(
                'friendships',
                {'friend_id': user_id, 'status': FriendshipStatus.PENDING.value},
                order_by='-created_at'
            )
            if requests:
                users = await tx.find_many('users', {'id': [r['user_id'] for r in requests]})
                by_id = {user['id']: user for user in users}
                for request in requests:
                    request['requester'] = by_id.get(request['user_id'])
        return requests

    async def list_sent(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Get pending requests a user has sent."""
        await self.ensure_store()
        return await self.store.find_many(
            'friendships',
            {'user_id': user_id, 'status': FriendshipStatus.PENDING.value},
            order_by='-created_at'
        )

    async def watch(self, user_id: UUID, callback: Callable) -> ListenerHandle:
        """Call back for every friendship change on either side of a user."""
        await self.ensure_store()
        return self.store.subscribe_to_changes(
            'friendships', callback, filters=[{'user_id': user_id}, {'friend_id': user_id}]
        )


__all__ = ['FriendManager', 'pair_key']
