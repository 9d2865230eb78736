"""
Shared PostgreSQL pool.

``get_connection()`` hands out one pooled connection for the length of a
``with`` block. Leaving the block normally commits; an exception rolls back.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2
import psycopg2.extensions
import psycopg2.pool

from aikotoba.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_lock = threading.Lock()


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    global _pool
    with _lock:
        if _pool is None or _pool.closed:
            cfg = get_config().db
            logger.info("Opening pool to %s (%d..%d connections)", cfg.describe(), cfg.pool_min, cfg.pool_max)
            try:
                _pool = psycopg2.pool.ThreadedConnectionPool(cfg.pool_min, cfg.pool_max, **cfg.connect_kwargs())
            except psycopg2.OperationalError as e:
                raise ConnectionError(f"PostgreSQL unreachable at {cfg.describe()}: {e}") from e
        return _pool


@contextmanager
def get_connection() -> Iterator[psycopg2.extensions.connection]:
    """Borrow a connection for one transaction."""
    pool = get_pool()
    try:
        conn = pool.getconn()
    except psycopg2.pool.PoolError as e:
        raise ConnectionError(f"PostgreSQL pool exhausted: {e}") from e

    broken = False
    try:
        yield conn
        conn.commit()
    except BaseException:
        try:
            conn.rollback()
        except psycopg2.Error:
            broken = True
        raise
    finally:
        # A connection that cannot roll back is not handed to the next caller.
        pool.putconn(conn, close=broken or bool(conn.closed))


def close_pool() -> None:
    global _pool
    with _lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None
