"""In-memory store.

Tables, defaults and unique indexes come from the same schema dictionaries
the database uses. Transactions are serialized behind one lock and rolled
back from a snapshot, which gives serializable semantics for free.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from errors import ConstraintViolationError, StoreError
from events import ChangeBus, matches, lookup
from ..lib.schema_manager import latest_schema, table_definitions, column_names
from . import Store, StoreSession, normalize_order

logger = logging.getLogger(__name__)


def parse_literal(expr: str) -> Any:
    """Evaluate a SQL default or literal from a schema definition."""
    expr = expr.strip()
    if expr == 'gen_random_uuid()':
        return uuid4()
    if expr == 'now()':
        return datetime.now(timezone.utc)
    if expr in ('true', 'false'):
        return expr == 'true'
    if expr.startswith("'") and expr.endswith("'"):
        return expr[1:-1]
    return Decimal(expr)


def _parse_where(where: Optional[str]) -> Optional[Dict[str, Any]]:
    # Partial index predicates are limited to "column = literal"
    if not where:
        return None
    column, _, literal = where.partition('=')
    return {column.strip(): parse_literal(literal)}


def _sort_key(value: Any):
    # None sorts first, like NULLS FIRST
    return (value is not None, value)


class MemorySession(StoreSession):
    def __init__(self, store: 'MemoryStore'):
        super().__init__()
        self.store = store

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        try:
            return self.store._tables[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}")

    def _check_unique(self, table: str, row: Dict[str, Any]) -> None:
        for columns, predicate in self.store._unique[table]:
            if predicate and not matches(row, predicate):
                continue
            key = tuple(row.get(col) for col in columns)
            if any(value is None for value in key):
                continue
            for other in self._rows(table):
                if other is row or other['id'] == row['id']:
                    continue
                if predicate and not matches(other, predicate):
                    continue
                if tuple(other.get(col) for col in columns) == key:
                    raise ConstraintViolationError(
                        f"Duplicate value for {table}({', '.join(columns)})"
                    )

    async def find_many(self, table, filters=None, order_by=None, limit=None):
        rows = [row for row in self._rows(table) if matches(row, filters)]
        # Stable sorts applied last key first keep insertion order on ties
        for column, descending in reversed(normalize_order(order_by)):
            rows.sort(key=lambda row: _sort_key(lookup(row, column)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def count(self, table, filters=None) -> int:
        return sum(1 for row in self._rows(table) if matches(row, filters))

    async def insert(self, table, values):
        columns = self.store._columns.get(table)
        if columns is None:
            raise StoreError(f"Unknown table: {table}")
        unknown = set(values) - set(columns)
        if unknown:
            raise StoreError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}")

        row = {}
        for col in self.store._definitions[table]['columns']:
            name = col['name']
            if name in values:
                row[name] = copy.deepcopy(values[name])
            elif 'default' in col:
                row[name] = parse_literal(col['default'])
            else:
                row[name] = None
            if row[name] is None and col.get('nullable') is False:
                raise StoreError(f"Column {table}.{name} may not be null")

        self._check_unique(table, row)
        self._rows(table).append(row)
        self.record(table, 'INSERT', new=copy.deepcopy(row))
        return copy.deepcopy(row)

    async def update(self, table, filters, patch):
        columns = self.store._columns.get(table)
        if columns is None:
            raise StoreError(f"Unknown table: {table}")
        unknown = set(patch) - set(columns)
        if unknown:
            raise StoreError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}")

        updated = []
        for row in self._rows(table):
            if not matches(row, filters):
                continue
            old = copy.deepcopy(row)
            row.update(copy.deepcopy(patch))
            if 'updated_at' in columns and 'updated_at' not in patch:
                row['updated_at'] = datetime.now(timezone.utc)
            self._check_unique(table, row)
            self.record(table, 'UPDATE', new=copy.deepcopy(row), old=old)
            updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table, filters):
        kept, deleted = [], []
        for row in self._rows(table):
            (deleted if matches(row, filters) else kept).append(row)
        self.store._tables[table] = kept
        for row in deleted:
            self.record(table, 'DELETE', old=copy.deepcopy(row))
        return copy.deepcopy(deleted)

    async def lock(self, table, filters):
        # Transactions are already serialized
        return await self.find_one(table, filters)


class MemoryStore(Store):
    """Store keeping every table in process memory."""

    def __init__(self, bus: Optional[ChangeBus] = None, schema: Optional[Dict[str, Any]] = None):
        super().__init__(bus)
        schema = schema or latest_schema()
        self._definitions = table_definitions(schema)
        self._columns = {
            name: column_names(table) for name, table in self._definitions.items()
        }
        self._unique: Dict[str, List[tuple]] = {}
        for name, table in self._definitions.items():
            unique = [(('id',), None)]
            unique.extend(
                (tuple(idx['columns']), _parse_where(idx.get('where')))
                for idx in table.get('indexes', [])
                if idx.get('unique')
            )
            self._unique[name] = unique
        self._tables: Dict[str, List[Dict[str, Any]]] = {
            name: [] for name in self._definitions
        }
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def _begin(self):
        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            session = MemorySession(self)
            try:
                yield session
            except BaseException:
                self._tables = snapshot
                raise

    def reset(self) -> None:
        """Empty every table."""
        self._tables = {name: [] for name in self._definitions}


__all__ = ['MemoryStore', 'MemorySession', 'parse_literal']
