"""Database module for the PostgreSQL (asyncpg) row store.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
- Selecting the row store used by the managers
"""

import json
import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from events import ChangeBus
from .lib.schema_manager import SchemaManager
from .store import Store, StoreSession
from .store.memory import MemoryStore
from .store.postgres import PostgresStore

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None
_store: Optional[Store] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    sslmode = params.get('sslmode', ['require'])[0]

    kwargs: Dict[str, Any] = {
        'ssl': False if sslmode == 'disable' else _get_ssl_context(),
        'server_settings': {
            'statement_timeout': '60000',  # 1 minute
        }
    }
    return kwargs

async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode JSON columns into Python values on every pooled connection."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog'
        )

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop and recreate all tables

    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager

    try:
        # Import here to avoid circular imports
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if not url:
            raise ValueError("Database URL not provided")

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            init=_init_connection,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize(force_recreate=force_recreate)

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def get_store(bus: Optional[ChangeBus] = None) -> Store:
    """Get the process-wide store, creating it from settings on first use.

    Args:
        bus: Change bus for a newly created store. Ignored when a store exists.
    """
    global _store

    if _store is None:
        from config import settings_conf

        if settings_conf.get('store_backend') == 'memory':
            logger.info("Using in-memory store")
            _store = MemoryStore(bus)
        else:
            logger.info("Using PostgreSQL store")
            _store = PostgresStore(await get_pool(), bus)
    return _store

def set_store(store: Optional[Store]) -> None:
    """Replace the process-wide store."""
    global _store
    _store = store

async def close() -> None:
    """Close the store and the database connection pool."""
    global _pool, _schema_manager, _store

    if _store:
        await _store.close()
        _store = None

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = [
    'init_db', 'get_pool', 'get_store', 'set_store', 'close',
    'Store', 'StoreSession', 'MemoryStore', 'PostgresStore'
]
