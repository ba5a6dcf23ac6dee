"""Database module for managing connections to PostgreSQL/CockroachDB.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle

The pool is returned to the caller and carried by the bridge context; this
module keeps no module-level connection state.
"""

import logging
import ssl
from typing import Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for CockroachDB Cloud connections."""
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
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    sslmode = params.get('sslmode', ['require'])[0]
    kwargs: Dict[str, Any] = {
        'ssl': False if sslmode == 'disable' else _get_ssl_context(),
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }

    return kwargs

def _strip_query(db_url: str) -> str:
    """asyncpg receives SSL settings as kwargs, not through the URL."""
    return db_url.split('?', 1)[0]

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL

    Raises:
        Exception: If database creation fails after retries
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/') or 'defaultdb'
    if db_name == 'defaultdb':
        return

    base_url = parsed._replace(path='/defaultdb', query='').geturl()
    logger.info(f"Connecting to defaultdb to create {db_name} if needed")

    conn = await asyncpg.connect(base_url, **_get_connection_kwargs(db_url))
    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )

        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    finally:
        await conn.close()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: str) -> asyncpg.Pool:
    """Create the connection pool and bring the schema up to date.

    Args:
        db_url: Database URL

    Returns:
        The connection pool

    Raises:
        DatabaseError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    if not db_url:
        raise DatabaseError("Database URL not provided")

    await create_database_if_not_exists(db_url)

    pool = await asyncpg.create_pool(
        _strip_query(db_url),
        min_size=2,          # Minimum idle connections
        max_size=10,         # Maximum connections
        max_queries=10000,   # Reset connection after this many queries
        max_inactive_connection_lifetime=300.0,  # 5 minutes
        command_timeout=60.0,  # 1 minute command timeout
        **_get_connection_kwargs(db_url)
    )

    try:
        await SchemaManager(pool).initialize()
    except Exception:
        await pool.close()
        raise

    logger.info("Database initialized")
    return pool

async def close(pool: asyncpg.Pool) -> None:
    """Close the database connection pool."""
    if pool:
        await pool.close()

# Export public interface
__all__ = ['init_db', 'close', 'DatabaseError', 'DatabaseSchemaError']
