"""
Billing database pool

One ``ThreadedConnectionPool`` per worker process, created on first use.
A request borrows a single connection and runs every read of its cost,
budget or usage computation inside that connection's transaction:

    with get_connection() as conn:
        cost = calculate_server_cost_for_project(conn, 1, begin, end, True)
"""

import os
import logging
import threading
from contextlib import contextmanager

from psycopg2 import pool

logger = logging.getLogger("billing.db_pool")

_pool = None
_pool_lock = threading.Lock()

POOL_MIN_CONN = int(os.getenv("DB_POOL_MIN_CONN", "2"))
POOL_MAX_CONN = int(os.getenv("DB_POOL_MAX_CONN", "10"))


def _db_params() -> dict:
    return dict(
        host=os.getenv("BILLING_DB_HOST", "db"),
        port=int(os.getenv("BILLING_DB_PORT", "5432")),
        dbname=os.getenv("BILLING_DB_NAME", "billing"),
        user=os.getenv("BILLING_DB_USER", "billing"),
        password=os.getenv("BILLING_DB_PASSWORD", ""),
    )


def init_pool():
    """Create the pool from the BILLING_DB_* settings."""
    global _pool
    params = _db_params()
    _pool = pool.ThreadedConnectionPool(POOL_MIN_CONN, POOL_MAX_CONN, **params)
    logger.info(
        "Billing pool ready for %s/%s (%d-%d connections)",
        params["host"], params["dbname"], POOL_MIN_CONN, POOL_MAX_CONN,
    )


def get_pool() -> pool.ThreadedConnectionPool:
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                init_pool()
    return _pool


@contextmanager
def get_connection():
    """
    Lend a pooled connection for the duration of a request.

    The billing reads commit on success; budget updates are committed the
    same way.  Any exception rolls the transaction back before it
    propagates, and the connection always goes back to the pool.
    """
    p = get_pool()
    conn = p.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        p.putconn(conn)


def close_pool():
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Billing pool closed")
