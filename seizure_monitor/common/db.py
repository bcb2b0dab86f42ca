"""
db.py – PostgreSQL access for seizure records.

``get_pool()`` lazily builds one psycopg ``ConnectionPool`` per process; the
seizure store borrows a connection for every write.  The pool is never built
at import time, so code paths that keep persistence disabled (and the unit
tests) run without a database.

Writes are wrapped in ``_with_retry``: an ``OperationalError`` (server
restarting, connection dropped) is retried with a doubling delay, and
re-raised once the attempts are used up so the recorder can report it.

Usage
-----
>>> from seizure_monitor.common.db import get_pool, insert_seizure
>>> with get_pool().connection() as conn:
...     insert_seizure(conn, record)
"""

import logging
import time
from functools import wraps
from typing import Callable, TypeVar

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.errors import OperationalError
from psycopg_pool import ConnectionPool

from seizure_monitor.common.config import settings
from seizure_monitor.common.models import SeizureRecord

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS: int = 5
RETRY_FIRST_DELAY_S: float = 0.5

_pool: ConnectionPool | None = None

SEIZURES_DDL = """
CREATE TABLE IF NOT EXISTS seizures (
    id                 BIGSERIAL PRIMARY KEY,
    user_id            BIGINT           NOT NULL,
    event_time         TIMESTAMPTZ      NOT NULL,
    heart_rate         DOUBLE PRECISION NOT NULL,
    spo2               DOUBLE PRECISION NOT NULL,
    movement_intensity TEXT             NOT NULL,
    note               TEXT,
    created_at         TIMESTAMPTZ      NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_seizures_user_time ON seizures (user_id, event_time DESC);
"""

INSERT_SEIZURE_SQL = """
INSERT INTO seizures (user_id, event_time, heart_rate, spo2, movement_intensity, note)
VALUES (%s, %s, %s, %s, %s, %s);
"""


def conninfo_from_settings() -> str:
    """libpq connection string for the configured database."""
    return make_conninfo(
        host=settings.postgres_host,
        port=settings.postgres_port,
        dbname=settings.postgres_db,
        user=settings.postgres_user,
        password=settings.postgres_password,
    )


def get_pool() -> ConnectionPool:
    """
    Process-wide pool, created on first use.

    ``ConnectionPool`` is thread-safe: the poll loop and the tick thread both
    persist through it.  Sizing comes from ``db_pool_min`` / ``db_pool_max``.
    """
    global _pool
    if _pool is not None:
        return _pool

    logger.info(
        "Opening PostgreSQL pool",
        extra={
            "db": settings.postgres_db,
            "host": settings.postgres_host,
            "pool_min": settings.db_pool_min,
            "pool_max": settings.db_pool_max,
        },
    )
    _pool = ConnectionPool(
        conninfo=conninfo_from_settings(),
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
        # Wait for a free connection instead of failing a write immediately
        timeout=30,
        reconnect_failed=lambda _pool: logger.error("PostgreSQL pool could not reconnect"),
    )
    return _pool


# Retry
# =======================================================================

_F = TypeVar("_F", bound=Callable)


def _with_retry(fn: _F) -> _F:
    """Retry ``fn`` on ``OperationalError``, doubling the delay each time."""

    @wraps(fn)
    def _retrying(*args, **kwargs):
        delay = RETRY_FIRST_DELAY_S
        attempt = 1
        while True:
            try:
                return fn(*args, **kwargs)
            except OperationalError as exc:
                if attempt >= RETRY_ATTEMPTS:
                    logger.error(
                        "%s gave up after %d attempts: %s", fn.__name__, attempt, exc
                    )
                    raise
                logger.warning(
                    "%s hit a transient DB error (attempt %d of %d), sleeping %.1fs: %s",
                    fn.__name__,
                    attempt,
                    RETRY_ATTEMPTS,
                    delay,
                    exc,
                )
                time.sleep(delay)
                delay *= 2
                attempt += 1

    return _retrying  # type: ignore[return-value]


# Statements
# =======================================================================

@_with_retry
def ensure_schema(conn: psycopg.Connection) -> None:
    """Create the ``seizures`` table and its user/time index when missing."""
    conn.execute(SEIZURES_DDL)
    logger.debug("seizures schema in place")


@_with_retry
def insert_seizure(conn: psycopg.Connection, record: SeizureRecord) -> None:
    conn.execute(
        INSERT_SEIZURE_SQL,
        (
            record.user_id,
            record.timestamp,
            record.heart_rate,
            record.spo2,
            record.movement_intensity,
            record.note,
        ),
    )
    logger.info(
        "Seizure stored",
        extra={
            "user_id": record.user_id,
            "heart_rate": record.heart_rate,
            "spo2": record.spo2,
            "movement": record.movement_intensity,
        },
    )
