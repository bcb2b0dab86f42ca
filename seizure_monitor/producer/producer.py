"""
producer.py – Publishes synthetic wearable samples to ``events.sensor.v1``.

Stands in for the phone-side sensor ingestion during local runs.  Every loop
iteration draws ``sim_samples_per_second / 3`` readings from the simulator
and publishes each as three samples (heart rate, SpO2, movement), keyed by
user id so one user's samples stay ordered within a partition.

``SIM_SEIZURE_RATIO`` sets how often a user starts a seizure episode;
``SIM_INVALID_RATIO`` how often an out-of-bounds heart rate is injected to
exercise the monitor's invalid-topic path.

Each batch also publishes one last-known-location update for a random user
to ``events.location.v1``.

SIGINT / SIGTERM stop the loop; queued messages get up to 5 s to flush.
"""

import json
import logging
import random
import signal
import sys
import threading
import time

from confluent_kafka import KafkaException
from prometheus_client import Counter, start_http_server

from seizure_monitor.common.config import settings
from seizure_monitor.common.kafka_utils import build_producer, make_delivery_callback
from seizure_monitor.common.models import SampleKind
from seizure_monitor.common.simulator import location_payload, raw_payload, reading_stream

logger = logging.getLogger(__name__)

SAMPLES_PRODUCED = Counter(
    "seizure_samples_produced_total",
    "Wearable samples acknowledged by the broker.",
)
PRODUCE_ERRORS = Counter(
    "seizure_produce_errors_total",
    "Wearable samples that could not be enqueued or were rejected by the broker.",
)

_stop = threading.Event()


def _handle_signal(signum: int, _frame) -> None:
    logger.info("Signal %d received, stopping producer", signum)
    _stop.set()


def publish_reading(producer, topic: str, user_id: int, reading: dict[SampleKind, object], on_delivery=None) -> int:
    """Enqueue one reading as one message per kind; returns how many were enqueued."""
    key = str(user_id).encode("utf-8")
    enqueued = 0
    for kind, value in reading.items():
        payload = json.dumps(raw_payload(user_id, kind, value)).encode("utf-8")
        try:
            producer.produce(topic, key=key, value=payload, on_delivery=on_delivery)
        except (KafkaException, BufferError) as exc:
            logger.error("Could not enqueue %s sample for user %d: %s", kind.value, user_id, exc)
            PRODUCE_ERRORS.inc()
            continue
        enqueued += 1
    return enqueued


def publish_location(producer, topic: str, user_id: int, on_delivery=None) -> bool:
    """Enqueue one last-known-location update for ``user_id``."""
    payload = json.dumps(location_payload(user_id)).encode("utf-8")
    try:
        producer.produce(topic, key=str(user_id).encode("utf-8"), value=payload, on_delivery=on_delivery)
    except (KafkaException, BufferError) as exc:
        logger.error("Could not enqueue location for user %d: %s", user_id, exc)
        PRODUCE_ERRORS.inc()
        return False
    return True


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    start_http_server(settings.prometheus_port)
    logger.info("Prometheus /metrics on port %d", settings.prometheus_port)

    producer = build_producer(settings.kafka_bootstrap_servers)
    on_delivery = make_delivery_callback(
        errors_counter=PRODUCE_ERRORS,
        produced_counter=SAMPLES_PRODUCED,
    )
    readings = reading_stream(
        user_count=settings.sim_user_count,
        seizure_ratio=settings.sim_seizure_ratio,
        invalid_ratio=settings.sim_invalid_ratio,
    )
    per_batch = max(1, settings.sim_samples_per_second // len(SampleKind))

    logger.info(
        "Sample producer running",
        extra={
            "topic": settings.kafka_topic_samples,
            "users": settings.sim_user_count,
            "readings_per_batch": per_batch,
            "seizure_ratio": settings.sim_seizure_ratio,
        },
    )

    window_start = time.monotonic()
    window_sent = 0
    while not _stop.is_set():
        for _ in range(per_batch):
            user_id, reading = next(readings)
            window_sent += publish_reading(
                producer, settings.kafka_topic_samples, user_id, reading, on_delivery
            )
        publish_location(
            producer,
            settings.kafka_topic_locations,
            random.randint(1, settings.sim_user_count),
        )
        producer.poll(0)

        elapsed = time.monotonic() - window_start
        if elapsed >= 10:
            logger.info(
                "Producer throughput",
                extra={"samples": window_sent, "samples_per_second": round(window_sent / elapsed, 1)},
            )
            window_start = time.monotonic()
            window_sent = 0

        _stop.wait(settings.sim_sleep_seconds)

    left = producer.flush(timeout=5)
    if left:
        logger.warning("%d samples still queued at exit", left)
    logger.info("Sample producer stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
