"""Change propagation bus.

Stores publish one ``ChangeEvent`` per committed row change. Listeners are
registered per table with optional column filters and receive events on
their own tasks, so a slow or failing listener never blocks the write that
produced the event or the other listeners.

Delivery is at-least-once and unordered within a burst. Nothing is kept
for listeners that are not registered at publish time; a reconnecting
client is expected to re-fetch its views.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EVENT_TYPES = ('INSERT', 'UPDATE', 'DELETE')

Filters = Union[Dict[str, Any], List[Dict[str, Any]], None]


class ChangeEvent(BaseModel):
    """A committed row change."""
    table: str
    event: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    committed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def row(self) -> Dict[str, Any]:
        """The row as it is after the change (before it, for deletes)."""
        return self.new if self.new is not None else (self.old or {})


def lookup(row: Dict[str, Any], key: str) -> Any:
    """Read a column, following dotted keys into JSON values."""
    value: Any = row
    for part in key.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _same(actual: Any, expected: Any) -> bool:
    if isinstance(actual, UUID) or isinstance(expected, UUID):
        return str(actual) == str(expected)
    return actual == expected


def matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Check a row against an equality filter map.

    A list, tuple or set value matches any of its members.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        actual = lookup(row, key)
        if isinstance(expected, (list, tuple, set)):
            if not any(_same(actual, option) for option in expected):
                return False
        elif not _same(actual, expected):
            return False
    return True


class ListenerHandle:
    """Disposable registration returned by ``ChangeBus.subscribe``."""

    def __init__(self, bus: 'ChangeBus', listener_id: UUID):
        self._bus = bus
        self.id = listener_id

    @property
    def active(self) -> bool:
        return self.id in self._bus._listeners

    def unsubscribe(self) -> None:
        self._bus._listeners.pop(self.id, None)

    def __enter__(self) -> 'ListenerHandle':
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class HandleGroup:
    """Several registrations disposed of together."""

    def __init__(self, handles: List[ListenerHandle]):
        self.handles = list(handles)

    @property
    def active(self) -> bool:
        return any(handle.active for handle in self.handles)

    def unsubscribe(self) -> None:
        for handle in self.handles:
            handle.unsubscribe()

    def __enter__(self) -> 'HandleGroup':
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class _Listener:
    def __init__(self, table: str, callback: Callable, filters: Filters, event: str):
        self.table = table
        self.callback = callback
        if filters is None:
            self.filters: List[Dict[str, Any]] = []
        elif isinstance(filters, dict):
            self.filters = [filters]
        else:
            self.filters = list(filters)
        self.event = event

    def wants(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        if self.event != '*' and change.event != self.event:
            return False
        if not self.filters:
            return True
        # Deletes are matched on the removed row, updates on either side
        rows = [row for row in (change.new, change.old) if row is not None]
        return any(matches(row, f) for f in self.filters for row in rows)


class ChangeBus:
    """In-process registry of change listeners."""

    def __init__(self):
        self._listeners: Dict[UUID, _Listener] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], Any],
        filters: Filters = None,
        event: str = '*'
    ) -> ListenerHandle:
        """Register a listener for row changes on a table.

        Args:
            table: Table to watch
            callback: Plain function or coroutine function taking a ChangeEvent
            filters: Column equality map, or a list of maps of which any may match
            event: One of INSERT, UPDATE, DELETE or '*' for all

        Returns:
            Handle whose ``unsubscribe`` stops delivery
        """
        if event != '*' and event not in EVENT_TYPES:
            raise ValueError(f"Invalid event type: {event}")
        listener_id = uuid4()
        self._listeners[listener_id] = _Listener(table, callback, filters, event)
        logger.debug(f"Listener {listener_id} registered on {table} ({event})")
        return ListenerHandle(self, listener_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, change: ChangeEvent) -> int:
        """Schedule delivery of a committed change to every matching listener.

        Returns:
            Number of listeners the change was scheduled for
        """
        targets = [
            listener for listener in list(self._listeners.values())
            if listener.wants(change)
        ]
        if not targets:
            return 0

        loop = asyncio.get_running_loop()
        for listener in targets:
            task = loop.create_task(self._deliver(listener, change))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return len(targets)

    async def _deliver(self, listener: _Listener, change: ChangeEvent) -> None:
        try:
            result = listener.callback(change)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Listener on {change.table} failed for {change.event}: {e}")

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Drop every listener."""
        self._listeners.clear()


__all__ = ['ChangeBus', 'ChangeEvent', 'ListenerHandle', 'HandleGroup', 'matches', 'lookup', 'EVENT_TYPES']
