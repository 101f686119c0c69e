"""Row store used by every manager.

The store exposes a small relational surface: equality filtering, single
row writes, serializable transactions and row-change notification through
a ``ChangeBus``. Two implementations exist, ``PostgresStore`` backed by the
asyncpg pool and ``MemoryStore`` for tests and local development.

Filters are dictionaries of column equality. A list value means "any of",
``None`` means IS NULL and a dotted key such as ``content.senderId`` reads a
field inside a JSON column. ``order_by`` takes column names, prefixed with
``-`` for descending order.

Usage:
    async with store.transaction() as tx:
        row = await tx.find_one('users', {'id': user_id})
        await tx.update('users', {'id': user_id}, {'username': 'alice'})

Nested ``transaction()`` calls join the outer transaction. Change events are
published only after the outermost transaction commits.
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from events import ChangeBus, ChangeEvent, ListenerHandle, Filters

logger = logging.getLogger(__name__)

OrderBy = Union[str, Sequence[str], None]


def normalize_order(order_by: OrderBy) -> List[tuple]:
    """Turn ``'-created_at'`` style keys into ``(column, descending)`` pairs."""
    if not order_by:
        return []
    if isinstance(order_by, str):
        order_by = [order_by]
    return [
        (key[1:], True) if key.startswith('-') else (key, False)
        for key in order_by
    ]


class StoreSession:
    """Operations available inside a transaction."""

    def __init__(self):
        self.changes: List[ChangeEvent] = []

    def record(self, table: str, event: str, new=None, old=None) -> None:
        self.changes.append(ChangeEvent(table=table, event=event, new=new, old=old))

    async def find_many(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: OrderBy = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: OrderBy = None
    ) -> Optional[Dict[str, Any]]:
        rows = await self.find_many(table, filters, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        raise NotImplementedError

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(
        self,
        table: str,
        filters: Dict[str, Any],
        patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Apply a patch to every matching row and return the updated rows."""
        raise NotImplementedError

    async def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Delete every matching row and return the deleted rows."""
        raise NotImplementedError

    async def lock(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Lock matching rows until the transaction ends and return the first."""
        raise NotImplementedError


class Store:
    """Base class for store implementations."""

    def __init__(self, bus: Optional[ChangeBus] = None):
        self.bus = bus or ChangeBus()
        self._current: ContextVar[Optional[StoreSession]] = ContextVar(
            f"store_session_{id(self)}", default=None
        )

    def _begin(self):
        """Return an async context manager yielding a fresh session.

        It must commit on normal exit and roll back when an exception escapes.
        """
        raise NotImplementedError

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        current = self._current.get()
        if current is not None:
            yield current
            return

        async with self._begin() as session:
            token = self._current.set(session)
            try:
                yield session
            finally:
                self._current.reset(token)

        for change in session.changes:
            self.bus.publish(change)

    def subscribe_to_changes(
        self,
        table: str,
        callback: Callable[[ChangeEvent], Any],
        filters: Filters = None,
        event: str = '*'
    ) -> ListenerHandle:
        return self.bus.subscribe(table, callback, filters=filters, event=event)

    async def find_one(self, table: str, filters=None, order_by: OrderBy = None):
        async with self.transaction() as tx:
            return await tx.find_one(table, filters, order_by=order_by)

    async def find_many(self, table: str, filters=None, order_by: OrderBy = None, limit=None):
        async with self.transaction() as tx:
            return await tx.find_many(table, filters, order_by=order_by, limit=limit)

    async def count(self, table: str, filters=None) -> int:
        async with self.transaction() as tx:
            return await tx.count(table, filters)

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        async with self.transaction() as tx:
            return await tx.insert(table, values)

    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]):
        async with self.transaction() as tx:
            return await tx.update(table, filters, patch)

    async def delete(self, table: str, filters: Dict[str, Any]):
        async with self.transaction() as tx:
            return await tx.delete(table, filters)

    async def close(self) -> None:
        await self.bus.drain()


__all__ = ['Store', 'StoreSession', 'normalize_order', 'OrderBy']
