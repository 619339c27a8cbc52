"""
Pooled PostgreSQL connections for the Vault config and secret env stores.

The pool is sized from ``DOCKHAND_DB_POOL_MIN``/``DOCKHAND_DB_POOL_MAX`` and
created on first use. Every ``get_connection()`` block is one transaction:

    from dockhand.db import get_connection

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT address FROM vault_config WHERE id = 1")

The API closes the pool on shutdown; CLI commands exit with the process.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from dockhand.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _open_pool() -> psycopg2.pool.ThreadedConnectionPool:
    cfg = get_config().db
    where = cfg.host or "local socket"
    logger.info(
        "Opening PostgreSQL pool %s@%s:%s/%s (%d-%d connections)",
        cfg.user,
        where,
        cfg.port,
        cfg.name,
        cfg.pool_min,
        cfg.pool_max,
    )
    try:
        return psycopg2.pool.ThreadedConnectionPool(cfg.pool_min, cfg.pool_max, **cfg.dict)
    except psycopg2.OperationalError as e:
        raise ConnectionError(
            f"Cannot reach the Dockhand database {cfg.name} at {where}:{cfg.port}: {e}\n"
            f"Check the DOCKHAND_DB_* settings."
        ) from e


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Return the shared pool, opening it on first use."""
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            _pool = _open_pool()
        return _pool


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    """Borrow a connection for one transaction.

    Commits when the block exits cleanly, rolls back when it raises.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close every pooled connection. A later get_connection() reopens the pool."""
    global _pool
    with _pool_lock:
        if _pool is not None and not _pool.closed:
            _pool.closeall()
            logger.info("Closed PostgreSQL pool")
        _pool = None
