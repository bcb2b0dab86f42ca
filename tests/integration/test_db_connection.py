"""
test_db_connection.py – Integration test: PostgreSQL connectivity and the seizure store.

Skipped when PostgreSQL is not reachable (e.g. CI without Docker Compose).

Coverage
--------
* Basic connectivity (SELECT 1).
* ``ensure_schema`` creates the ``seizures`` table and its user/time index.
* ``insert_seizure`` writes a record that reads back unchanged.
"""

import os
from datetime import datetime, timezone

import psycopg
import pytest

from seizure_monitor.common.db import ensure_schema, insert_seizure
from seizure_monitor.common.models import SeizureRecord


# ─────────────────────────────────────────────────────────────────────────────
# Helper: attempt to connect, skip if not reachable
# ─────────────────────────────────────────────────────────────────────────────

def _get_conn() -> psycopg.Connection:
    return psycopg.connect(
        host=os.getenv("POSTGRES_HOST", "localhost"),
        port=os.getenv("POSTGRES_PORT", "55432"),
        dbname=os.getenv("POSTGRES_DB", "epilepsy"),
        user=os.getenv("POSTGRES_USER", "epilepsy_user"),
        password=os.getenv("POSTGRES_PASSWORD", "epilepsy_pass"),
        connect_timeout=3,
    )


@pytest.fixture(scope="module")
def db_conn():
    """One autocommit connection shared across the module, with the schema in place."""
    try:
        conn = _get_conn()
    except Exception as exc:
        pytest.skip(f"PostgreSQL not reachable, skipping integration tests: {exc}")
    conn.autocommit = True
    ensure_schema(conn)
    yield conn
    conn.close()


# ─────────────────────────────────────────────────────────────────────────────
# Tests
# ─────────────────────────────────────────────────────────────────────────────

def test_basic_connectivity(db_conn):
    with db_conn.cursor() as cur:
        cur.execute("SELECT 1")
        assert cur.fetchone()[0] == 1


def test_seizures_table_exists(db_conn):
    with db_conn.cursor() as cur:
        cur.execute(
            """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = 'public'
                AND   table_name   = 'seizures'
            );
            """
        )
        assert cur.fetchone()[0] is True, "Table 'seizures' not found"


def test_seizures_user_time_index_exists(db_conn):
    with db_conn.cursor() as cur:
        cur.execute(
            """
            SELECT EXISTS (
                SELECT 1 FROM pg_indexes
                WHERE tablename = 'seizures'
                AND   indexname = 'idx_seizures_user_time'
            );
            """
        )
        assert cur.fetchone()[0] is True, "Index 'idx_seizures_user_time' not found"


def test_ensure_schema_is_idempotent(db_conn):
    ensure_schema(db_conn)


def test_insert_seizure_round_trip(db_conn):
    # Out of the simulator's id range so reruns never collide with live data
    user_id = 990_001
    event_time = datetime(2026, 3, 14, 9, 26, 53, tzinfo=timezone.utc)
    record = SeizureRecord(
        user_id=user_id,
        timestamp=event_time,
        heart_rate=133.0,
        spo2=97.0,
        movement_intensity="LOW",
        note="Seizure detected with HR: 133.0, SpO2: 97.0, Movement: LOW",
    )

    with db_conn.cursor() as cur:
        cur.execute("DELETE FROM seizures WHERE user_id = %s", (user_id,))

    insert_seizure(db_conn, record)

    with db_conn.cursor() as cur:
        cur.execute(
            """
            SELECT event_time, heart_rate, spo2, movement_intensity, note
            FROM seizures WHERE user_id = %s
            """,
            (user_id,),
        )
        rows = cur.fetchall()
        cur.execute("DELETE FROM seizures WHERE user_id = %s", (user_id,))

    assert len(rows) == 1
    ts, heart_rate, spo2, movement, note = rows[0]
    assert ts == event_time
    assert (heart_rate, spo2, movement) == (133.0, 97.0, "LOW")
    assert note == record.note
