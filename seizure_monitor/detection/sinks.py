"""
sinks.py – Persistence and alert collaborators injected into the detector.

Persistence
-----------
* ``PostgresSeizureStore`` – writes through the pooled ``insert_seizure``
  helper (which already retries transient ``OperationalError``).
* ``NullSeizureStore``     – accepts and drops records; used when no database
  is configured.

Alerting
--------
* ``KafkaAlertDispatcher`` – publishes a ``SeizureAlert`` carrying the user's
  identity and last known coordinates to the alert topic, keyed by user id so
  alerts for one user stay ordered.
* ``NullAlertDispatcher``  – logs only.

The host (``monitor.py``) picks one of each; the detector only sees the
``persist`` / ``dispatch`` callables.
"""

import json
import logging

from confluent_kafka import Producer
from psycopg_pool import ConnectionPool

from seizure_monitor.common.db import ensure_schema, insert_seizure
from seizure_monitor.common.models import SeizureAlert, SeizureRecord, UserContext

logger = logging.getLogger(__name__)


# Persistence
# =======================================================================

class PostgresSeizureStore:
    def __init__(self, pool: ConnectionPool, create_schema: bool = True) -> None:
        self._pool = pool
        if create_schema:
            with self._pool.connection() as conn:
                ensure_schema(conn)

    def persist(self, record: SeizureRecord) -> bool:
        # conn.commit() is called by the pool context manager on clean exit
        with self._pool.connection() as conn:
            insert_seizure(conn, record)
        return True


class NullSeizureStore:
    def persist(self, record: SeizureRecord) -> bool:
        logger.info(
            "Persistence disabled, dropping seizure record",
            extra={"user_id": record.user_id, "note": record.note},
        )
        return True


# Alerting
# =======================================================================

class KafkaAlertDispatcher:
    """Publish one ``SeizureAlert`` per call and wait briefly for delivery."""

    def __init__(self, producer: Producer, topic: str, flush_timeout: float = 5.0) -> None:
        self._producer = producer
        self._topic = topic
        self._flush_timeout = flush_timeout

    def dispatch(self, context: UserContext) -> None:
        alert = SeizureAlert(
            user_id=context.user_id,
            email=context.email,
            latitude=context.latitude,
            longitude=context.longitude,
        )
        self._producer.produce(
            self._topic,
            key=str(alert.user_id).encode("utf-8"),
            value=json.dumps(alert.model_dump(mode="json")).encode("utf-8"),
        )
        remaining = self._producer.flush(self._flush_timeout)
        if remaining > 0:
            raise RuntimeError(
                f"seizure alert for user {alert.user_id} not delivered within "
                f"{self._flush_timeout:.1f}s"
            )
        logger.info(
            "Seizure alert published",
            extra={
                "alert_id": str(alert.alert_id),
                "user_id": alert.user_id,
                "topic": self._topic,
            },
        )


class NullAlertDispatcher:
    def dispatch(self, context: UserContext) -> None:
        logger.info(
            "Alert dispatch not configured, skipping",
            extra={"user_id": context.user_id},
        )
