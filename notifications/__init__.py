"""Notification outbox.

Notifications are appended by the friendship, subscription and payment
managers inside their own transactions, so a notification exists exactly
when the change that produced it was committed. Recipients read, mark and
delete their own notifications only.
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from database import get_store
from errors import NotFoundError
from events import ListenerHandle
from models import NotificationContent, NotificationType

logger = logging.getLogger(__name__)


class NotificationManager:
    """Manager class for the per-user notification log."""

    def __init__(self, store=None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a row store."""
        if not self.store:
            self.store = await get_store()

    async def append(
        self,
        tx,
        recipient_id: UUID,
        content: NotificationContent,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Append a notification inside the caller's transaction."""
        row = await tx.insert('notifications', {
            'user_id': recipient_id,
            'type': content.type,
            'content': content.to_row(),
            'metadata': metadata,
            'read': False
        })
        logger.debug(f"Queued {content.type} notification for {recipient_id}")
        return row

    async def discard(
        self,
        tx,
        recipient_id: UUID,
        notification_type: NotificationType,
        content_match: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Delete a recipient's notifications of one type whose content matches.

        Args:
            content_match: camelCase content keys and the values they must hold
        """
        filters: Dict[str, Any] = {'user_id': recipient_id, 'type': notification_type.value}
        for key, value in (content_match or {}).items():
            filters[f"content.{key}"] = str(value)
        return await tx.delete('notifications', filters)

    async def list(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get a user's notifications, newest first."""
        await self.ensure_store()
        filters: Dict[str, Any] = {'user_id': user_id}
        if unread_only:
            filters['read'] = False
        return await self.store.find_many(
            'notifications', filters, order_by='-created_at', limit=limit
        )

    async def unread_count(self, user_id: UUID) -> int:
        await self.ensure_store()
        return await self.store.count('notifications', {'user_id': user_id, 'read': False})

    async def get(self, notification_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """Get one notification owned by a user.

        Raises:
            NotFoundError: If it does not exist or belongs to someone else
        """
        await self.ensure_store()
        row = await self.store.find_one(
            'notifications', {'id': notification_id, 'user_id': user_id}
        )
        if not row:
            raise NotFoundError("Notification not found")
        return row

    async def mark_read(self, notification_id: UUID, user_id: UUID, guard=None) -> Dict[str, Any]:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            rows = await tx.update(
                'notifications',
                {'id': notification_id, 'user_id': user_id},
                {'read': True}
            )
            if not rows:
                raise NotFoundError("Notification not found")
            if guard:
                await guard.check()
        return rows[0]

    async def mark_all_read(self, user_id: UUID, guard=None) -> int:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            rows = await tx.update(
                'notifications',
                {'user_id': user_id, 'read': False},
                {'read': True}
            )
            if guard:
                await guard.check()
        return len(rows)

    async def delete(self, notification_id: UUID, user_id: UUID, guard=None) -> None:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            rows = await tx.delete(
                'notifications', {'id': notification_id, 'user_id': user_id}
            )
            if not rows:
                raise NotFoundError("Notification not found")
            if guard:
                await guard.check()

    async def clear_all(self, user_id: UUID, guard=None) -> int:
        """Delete every notification of a user."""
        await self.ensure_store()
        async with self.store.transaction() as tx:
            rows = await tx.delete('notifications', {'user_id': user_id})
            if guard:
                await guard.check()
        logger.info(f"Cleared {len(rows)} notification(s) for {user_id}")
        return len(rows)

    async def watch(self, user_id: UUID, callback: Callable) -> ListenerHandle:
        """Call back for every new notification addressed to a user."""
        await self.ensure_store()
        return self.store.subscribe_to_changes(
            'notifications', callback, filters={'user_id': user_id}, event='INSERT'
        )


__all__ = ['NotificationManager']
