"""Store backed by the asyncpg pool.

Every transaction runs at SERIALIZABLE isolation. ``lock`` issues
``SELECT ... FOR UPDATE`` so membership changes on one subscription queue
behind each other. Serialization failures surface as retryable
``StoreError`` and unique violations as ``ConstraintViolationError``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from errors import ConstraintViolationError, StoreError
from events import ChangeBus
from ..lib.schema_manager import latest_schema, table_definitions, column_names
from . import Store, StoreSession, normalize_order

logger = logging.getLogger(__name__)


def _translate(e: Exception) -> StoreError:
    if isinstance(e, asyncpg.exceptions.UniqueViolationError):
        return ConstraintViolationError(f"Conflicting update: {e}")
    if isinstance(e, asyncpg.exceptions.SerializationError):
        return StoreError(f"Concurrent update, please retry: {e}", retryable=True)
    return StoreError(f"Database error: {e}")


class PostgresSession(StoreSession):
    def __init__(self, store: 'PostgresStore', conn: asyncpg.Connection):
        super().__init__()
        self.store = store
        self.conn = conn

    def _column(self, table: str, key: str) -> str:
        """Quote-free column expression for a filter or order key."""
        columns = self.store._columns.get(table)
        if columns is None:
            raise StoreError(f"Unknown table: {table}")
        name, *path = key.split('.')
        if name not in columns:
            raise StoreError(f"Unknown column {table}.{name}")
        if not path:
            return name
        expr = name
        for part in path[:-1]:
            expr += f"->'{part}'"
        return f"{expr}->>'{path[-1]}'"

    def _where(
        self,
        table: str,
        filters: Optional[Dict[str, Any]],
        args: List[Any]
    ) -> str:
        if not filters:
            return ''
        clauses = []
        for key, value in filters.items():
            column = self._column(table, key)
            is_json = '.' in key
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set)):
                values = [str(v) if is_json else v for v in value]
                args.append(values)
                cast = '::text[]' if is_json else ''
                clauses.append(f"{column} = ANY(${len(args)}{cast})")
            else:
                args.append(str(value) if is_json else value)
                clauses.append(f"{column} = ${len(args)}")
        return ' WHERE ' + ' AND '.join(clauses)

    def _order(self, table: str, order_by) -> str:
        keys = normalize_order(order_by)
        if not keys:
            return ''
        return ' ORDER BY ' + ', '.join(
            f"{self._column(table, column)} {'DESC' if descending else 'ASC'}"
            for column, descending in keys
        )

    async def _fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        try:
            records = await self.conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise _translate(e)
        return [dict(record) for record in records]

    async def find_many(self, table, filters=None, order_by=None, limit=None):
        args: List[Any] = []
        query = f"SELECT * FROM {table}{self._where(table, filters, args)}{self._order(table, order_by)}"
        if limit is not None:
            args.append(int(limit))
            query += f" LIMIT ${len(args)}"
        return await self._fetch(query, *args)

    async def count(self, table, filters=None) -> int:
        args: List[Any] = []
        query = f"SELECT count(*) AS total FROM {table}{self._where(table, filters, args)}"
        rows = await self._fetch(query, *args)
        return rows[0]['total']

    async def insert(self, table, values):
        columns = [self._column(table, key) for key in values]
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        rows = await self._fetch(query, *values.values())
        self.record(table, 'INSERT', new=rows[0])
        return rows[0]

    async def update(self, table, filters, patch):
        patch = dict(patch)
        if 'updated_at' in self.store._columns[table] and 'updated_at' not in patch:
            patch['updated_at'] = None
        old_rows = await self._locked(table, filters)
        if not old_rows:
            return []

        args: List[Any] = []
        assignments = []
        for key, value in patch.items():
            column = self._column(table, key)
            if key == 'updated_at' and value is None:
                assignments.append(f"{column} = now()")
                continue
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")
        args.append([row['id'] for row in old_rows])
        query = (
            f"UPDATE {table} SET {', '.join(assignments)} "
            f"WHERE id = ANY(${len(args)}) RETURNING *"
        )
        rows = await self._fetch(query, *args)
        previous = {row['id']: row for row in old_rows}
        for row in rows:
            self.record(table, 'UPDATE', new=row, old=previous.get(row['id']))
        return rows

    async def delete(self, table, filters):
        args: List[Any] = []
        query = f"DELETE FROM {table}{self._where(table, filters, args)} RETURNING *"
        rows = await self._fetch(query, *args)
        for row in rows:
            self.record(table, 'DELETE', old=row)
        return rows

    async def _locked(self, table, filters) -> List[Dict[str, Any]]:
        args: List[Any] = []
        query = f"SELECT * FROM {table}{self._where(table, filters, args)} FOR UPDATE"
        return await self._fetch(query, *args)

    async def lock(self, table, filters):
        rows = await self._locked(table, filters)
        return rows[0] if rows else None


class PostgresStore(Store):
    """Store running every transaction on a pooled asyncpg connection."""

    def __init__(self, pool: asyncpg.Pool, bus: Optional[ChangeBus] = None, schema=None):
        super().__init__(bus)
        self.pool = pool
        definitions = table_definitions(schema or latest_schema())
        self._columns = {name: column_names(table) for name, table in definitions.items()}

    @asynccontextmanager
    async def _begin(self):
        async with self.pool.acquire() as conn:
            session = PostgresSession(self, conn)
            try:
                async with conn.transaction(isolation='serializable'):
                    yield session
            except asyncpg.PostgresError as e:
                # Raised by COMMIT itself, statement errors are already translated
                logger.error(f"Transaction failed: {e}")
                raise _translate(e)


__all__ = ['PostgresStore', 'PostgresSession']
