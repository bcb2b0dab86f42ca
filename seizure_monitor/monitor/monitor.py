"""
monitor.py – Seizure monitor consumer service.

Architecture
------------
This service consumes wearable samples from ``events.sensor.v1`` and last
known positions from ``events.location.v1`` as consumer group
``cg.seizure-monitor.v1`` and drives one ``SeizureDetector`` per monitored
user.  Detectors are independent: each owns its buffers, state,
cooldown timer and user context.

Processing pipeline per message
-------------------------------
1. Deserialise JSON → ``SensorSample`` (pydantic validation).
2. Fold the sample into its user's detector.
3. Evaluate that detector immediately.  A detection hands persistence and
   alert dispatch to a thread pool, so the poll loop keeps ingesting.
4. Commit the Kafka offset.

Location updates only replace the user's coordinates; they never evaluate.

Malformed samples are quarantined on ``events.invalid.v1`` and committed.
Unexpected failures go to ``events.dlq.v1`` and are not committed.

A background tick thread additionally evaluates every detector each
``evaluation_interval_seconds``, so a user whose wearable goes quiet is still
re-checked once their cooldown expires.

Collaborators
-------------
* Persistence: ``PostgresSeizureStore`` or ``NullSeizureStore``
  (``PERSISTENCE_ENABLED``).
* Alerting: ``KafkaAlertDispatcher`` on ``events.seizure-alert.v1``; the
  ``ALERTS_ENABLED`` policy flag is applied by the detector itself.

Observability
-------------
* Prometheus counters on ``prometheus_port + 3``.
* Graceful shutdown on SIGINT / SIGTERM: stop the tick thread, cancel
  cooldown timers, close consumer and pool.
"""

import json
import logging
import signal
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from confluent_kafka import KafkaError
from prometheus_client import Counter, Gauge, start_http_server
from pydantic import ValidationError

from seizure_monitor.common.config import settings
from seizure_monitor.common.db import get_pool
from seizure_monitor.common.kafka_utils import build_consumer, build_producer
from seizure_monitor.common.models import (
    EvaluationOutcome,
    EvaluationResult,
    InvalidSample,
    LocationUpdate,
    SensorSample,
)
from seizure_monitor.detection.engine import DispatchFn, SeizureDetector
from seizure_monitor.detection.recorder import EventRecorder, PersistFn
from seizure_monitor.detection.sinks import (
    KafkaAlertDispatcher,
    NullSeizureStore,
    PostgresSeizureStore,
)
from seizure_monitor.detection.user_context import UserContextHolder

logger = logging.getLogger(__name__)

# Prometheus metrics
SAMPLES_CONSUMED = Counter(
    "seizure_samples_consumed_total",
    "Total samples folded into a detector, labelled by kind.",
    ["kind"],
)
INVALID_TOTAL = Counter(
    "seizure_invalid_samples_total",
    "Samples quarantined on the invalid topic after failing validation.",
)
DLQ_TOTAL = Counter(
    "seizure_dlq_total",
    "Samples sent to the DLQ after an unexpected processing error.",
)
EVALUATIONS = Counter(
    "seizure_evaluations_total",
    "Detector evaluations, labelled by outcome.",
    ["outcome"],
)
PERSIST_FAILURES = Counter(
    "seizure_persist_failures_total",
    "Seizure records the persistence sink failed to store.",
)
DISPATCH_FAILURES = Counter(
    "seizure_dispatch_failures_total",
    "Seizure alerts that could not be dispatched.",
)
ALERTS_DISPATCHED = Counter(
    "seizure_alerts_dispatched_total",
    "Seizure alerts handed to the alert dispatcher successfully.",
)
LOCATION_UPDATES = Counter(
    "seizure_location_updates_total",
    "Last-known-location updates applied to a user context.",
)
ACTIVE_DETECTORS = Gauge(
    "seizure_active_detectors",
    "Number of per-user detectors currently held by the monitor.",
)

_shutdown = threading.Event()


def _handle_signal(signum: int, _frame) -> None:
    """Request graceful shutdown on SIGINT / SIGTERM."""
    logger.info("Signal %d received, stopping seizure monitor", signum)
    _shutdown.set()


# Detector registry
# =======================================================================

class DetectorRegistry:
    """
    Lazily creates one ``SeizureDetector`` per user id.

    The configured monitored user starts with the identity and location from
    settings; any other user starts with the default context carrying its own
    id.  ``detector_kwargs`` (thresholds, ``executor``, ``timer_factory`` ...)
    are passed to every detector.
    """

    def __init__(self, persist: PersistFn, dispatch_alert: DispatchFn, **detector_kwargs) -> None:
        self._persist = persist
        self._dispatch_alert = dispatch_alert
        self._detector_kwargs = detector_kwargs
        self._detectors: dict[int, SeizureDetector] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> SeizureDetector:
        with self._lock:
            detector = self._detectors.get(user_id)
            if detector is None:
                detector = self._create(user_id)
                self._detectors[user_id] = detector
                ACTIVE_DETECTORS.set(len(self._detectors))
            return detector

    def _create(self, user_id: int) -> SeizureDetector:
        context = UserContextHolder()
        if user_id == settings.monitor_user_id:
            context.set_user_data(
                email=settings.monitor_user_email,
                latitude=settings.monitor_latitude,
                longitude=settings.monitor_longitude,
                user_id=user_id,
            )
        else:
            context.set_user_data(user_id=user_id)
        logger.info("Creating detector", extra={"user_id": user_id})
        return SeizureDetector(
            recorder=EventRecorder(self._persist),
            dispatch_alert=self._dispatch_alert,
            context=context,
            **self._detector_kwargs,
        )

    def all(self) -> list[SeizureDetector]:
        with self._lock:
            return list(self._detectors.values())

    def shutdown(self) -> None:
        for detector in self.all():
            detector.shutdown()


# Processing helpers
# =======================================================================

def record_result(result: EvaluationResult) -> None:
    """Update Prometheus counters for one completed evaluation."""
    EVALUATIONS.labels(outcome=result.outcome.value).inc()
    if result.outcome is not EvaluationOutcome.SEIZURE_DETECTED:
        return
    if result.persisted is False:
        PERSIST_FAILURES.inc()
    if result.dispatch_error is not None:
        DISPATCH_FAILURES.inc()
    elif result.alert_dispatched:
        ALERTS_DISPATCHED.inc()
    logger.info(
        "Detection cycle complete",
        extra={
            "user_id": result.record.user_id if result.record else None,
            "persisted": result.persisted,
            "alert_dispatched": result.alert_dispatched,
            "state": result.state.value,
        },
    )


def _on_cycle_complete(completion: Future) -> None:
    exc = completion.exception()
    if exc is not None:
        logger.error("Detection side effects failed: %s", exc, exc_info=exc)
        return
    record_result(completion.result())


def track_result(result: EvaluationResult) -> EvaluationResult:
    """Count ``result`` now, or once its side effects finish on the executor."""
    if result.completion is None:
        record_result(result)
    else:
        result.completion.add_done_callback(_on_cycle_complete)
    return result


def process_message(raw_payload: str, registry: DetectorRegistry) -> EvaluationResult:
    """
    Validate one raw sample, fold it into its user's detector and evaluate.

    Raises ``json.JSONDecodeError`` / ``ValidationError`` for malformed input;
    the caller quarantines those.  When the registry's detectors have an
    executor, a detection returns in state ``latched`` without waiting for
    persistence or dispatch.
    """
    sample = SensorSample.model_validate(json.loads(raw_payload))
    detector = registry.get(sample.user_id)
    detector.ingest(sample)
    SAMPLES_CONSUMED.labels(kind=sample.kind.value).inc()
    return track_result(detector.evaluate())


def process_location_message(raw_payload: str, registry: DetectorRegistry) -> LocationUpdate:
    """Apply a last-known-location update to its user's context."""
    update = LocationUpdate.model_validate(json.loads(raw_payload))
    registry.get(update.user_id).update_location(update.latitude, update.longitude)
    LOCATION_UPDATES.inc()
    return update


def tick(registry: DetectorRegistry) -> list[EvaluationResult]:
    """Evaluate every detector once."""
    return [track_result(detector.evaluate()) for detector in registry.all()]


def _tick_loop(registry: DetectorRegistry, interval: float) -> None:
    while not _shutdown.wait(interval):
        try:
            tick(registry)
        except Exception:
            logger.exception("Periodic evaluation failed")


def _publish_quarantine(producer, topic: str, raw: str, error: str, error_type: str) -> None:
    """Wrap a rejected message in an ``InvalidSample`` envelope and publish it."""
    envelope = InvalidSample(error=error, raw=raw, error_type=error_type)
    producer.produce(topic, value=json.dumps(envelope.model_dump()).encode("utf-8"))
    producer.flush(1)


def _build_persist() -> tuple[PersistFn, object]:
    """Return the persistence callable and the pool to close on shutdown (or None)."""
    if not settings.persistence_enabled:
        logger.warning("Persistence disabled, seizure records will not be stored")
        return NullSeizureStore().persist, None
    pool = get_pool()
    return PostgresSeizureStore(pool).persist, pool


def main() -> None:
    """
    Run the seizure monitor consumer loop.

    Flow
    ----
    1. Register signal handlers.
    2. Start Prometheus /metrics HTTP server.
    3. Build persistence sink, alert dispatcher, detector registry, tick thread.
    4. Poll samples and location updates, ingest, evaluate, commit.  Side
       effects of a detection run on the executor, never on the poll loop.
    5. On shutdown: stop tick thread, cancel timers, drain the executor,
       close consumer and pool.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    # Offset port by 3 to avoid collision with the other services
    metrics_port = settings.prometheus_port + 3
    start_http_server(metrics_port)
    logger.info("Prometheus /metrics on port %d", metrics_port)

    consumer = build_consumer(
        settings.kafka_bootstrap_servers,
        settings.kafka_consumer_group_monitor,
    )
    quarantine_producer = build_producer(settings.kafka_bootstrap_servers)
    alert_producer = build_producer(settings.kafka_bootstrap_servers, low_latency=True)
    consumer.subscribe([settings.kafka_topic_samples, settings.kafka_topic_locations])

    persist, pool = _build_persist()
    dispatcher = KafkaAlertDispatcher(alert_producer, settings.kafka_topic_alerts)
    executor = ThreadPoolExecutor(
        max_workers=settings.side_effect_workers,
        thread_name_prefix="seizure-side-effects",
    )
    registry = DetectorRegistry(persist, dispatcher.dispatch, executor=executor)

    ticker = threading.Thread(
        target=_tick_loop,
        args=(registry, settings.evaluation_interval_seconds),
        name="seizure-tick",
        daemon=True,
    )
    ticker.start()

    logger.info(
        "Seizure monitor started",
        extra={
            "topics": [settings.kafka_topic_samples, settings.kafka_topic_locations],
            "group": settings.kafka_consumer_group_monitor,
            "heart_rate_threshold": settings.heart_rate_threshold,
            "spo2_threshold": settings.spo2_threshold,
            "cooldown_seconds": settings.cooldown_seconds,
            "alerts_enabled": settings.alerts_enabled,
        },
    )

    try:
        while not _shutdown.is_set():
            msg = consumer.poll(1.0)

            if msg is None:
                continue

            if msg.error():
                if msg.error().code() != KafkaError._PARTITION_EOF:
                    logger.error("Monitor consumer error: %s", msg.error())
                continue

            raw_payload = msg.value().decode("utf-8")

            try:
                if msg.topic() == settings.kafka_topic_locations:
                    process_location_message(raw_payload, registry)
                else:
                    process_message(raw_payload, registry)
                consumer.commit(message=msg)

            except (ValidationError, json.JSONDecodeError) as exc:
                logger.warning(
                    "Invalid message, routing to invalid topic | error=%s | payload=%s",
                    str(exc),
                    raw_payload[:200],
                )
                INVALID_TOTAL.inc()
                _publish_quarantine(
                    quarantine_producer,
                    settings.kafka_topic_invalid,
                    raw_payload,
                    str(exc),
                    "VALIDATION",
                )
                consumer.commit(message=msg)

            except Exception as exc:
                logger.exception(
                    "Sample processing failed, sending to DLQ",
                    extra={"error": str(exc), "topic": settings.kafka_topic_dlq},
                )
                DLQ_TOTAL.inc()
                _publish_quarantine(
                    quarantine_producer,
                    settings.kafka_topic_dlq,
                    raw_payload,
                    str(exc),
                    "PROCESSING",
                )
                # Offset is deliberately not committed; the sample is redelivered.

    finally:
        logger.info("Stopping tick thread, cancelling cooldowns, closing clients…")
        _shutdown.set()
        ticker.join(timeout=5)
        executor.shutdown(wait=True)
        registry.shutdown()
        consumer.close()
        alert_producer.flush(5)
        if pool is not None:
            pool.close()
        logger.info("Seizure monitor shut down cleanly.")
        sys.exit(0)


if __name__ == "__main__":
    main()
