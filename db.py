# db.py
from __future__ import annotations

from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.extras import RealDictCursor
from psycopg2.pool import SimpleConnectionPool

from settings import settings

_pool: SimpleConnectionPool | None = None


def init_pool() -> None:
    """
    Initialize the PostgreSQL connection pool.
    Called lazily by the first get_conn() (web process and daemons alike).
    """
    psycopg2.extras.register_uuid()
    global _pool
    if _pool is None:
        _pool = SimpleConnectionPool(
            minconn=1,
            maxconn=settings.DB_POOL_MAX,
            dsn=settings.DATABASE_URL,
            connect_timeout=5,
        )


def close_pool() -> None:
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None


@contextmanager
def get_conn():
    """
    Provides a transactional DB connection.
    Commits on success, rolls back on error.
    """
    if _pool is None:
        init_pool()

    conn = _pool.getconn()

    try:
        with conn.cursor() as cur:
            cur.execute("SELECT set_config('statement_timeout', %s, false);", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
            cur.execute("SET application_name = 'creatorpay_api';")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        _pool.putconn(conn)


def dict_cursor(conn):
    return conn.cursor(cursor_factory=RealDictCursor)
