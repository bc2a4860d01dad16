from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.pool import SimpleConnectionPool

from storefront_payments.config import settings
from storefront_payments.domain.errors import ConfigurationError

_pool: SimpleConnectionPool | None = None
_SCHEMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def init_pool() -> None:
    global _pool
    if _pool is not None:
        return
    if not settings.db_enabled:
        raise ConfigurationError("Database is not configured (DB_HOST, DB_USER, DB_NAME)")
    if settings.db_schema and not _SCHEMA_NAME.match(settings.db_schema):
        raise ConfigurationError(f"Invalid DB_SCHEMA {settings.db_schema!r}")
    _pool = SimpleConnectionPool(1, 10, dsn=settings.db_dsn)


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection]:
    """Yield a pooled connection; commit on success, roll back on error."""
    if _pool is None:
        init_pool()
    assert _pool is not None
    conn: psycopg2.extensions.connection | None = None
    try:
        # Retry once when the pool hands out a connection the server closed
        for attempt in range(2):
            conn = _pool.getconn()
            try:
                if settings.db_schema:
                    with conn.cursor() as cur:
                        cur.execute(f"SET search_path TO {settings.db_schema}")
                break
            except (psycopg2.OperationalError, psycopg2.InterfaceError):
                _pool.putconn(conn, close=True)
                conn = None
                if attempt == 1:
                    raise
        assert conn is not None
        yield conn
        conn.commit()
    except Exception:
        if conn is not None and not conn.closed:
            conn.rollback()
        raise
    finally:
        if conn is not None:
            _pool.putconn(conn)


def ping() -> bool:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            return cur.fetchone() is not None
