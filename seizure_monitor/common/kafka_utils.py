"""
kafka_utils.py – confluent-kafka client factories shared by the services.

Producers are idempotent with ``acks=all``.  The sample producer batches for
5 ms; the alert producer (``low_latency=True``) sends immediately.

Consumers commit manually, after a sample has been folded into its detector
or quarantined, and start from ``latest`` so a freshly started monitor does
not replay old samples into new alerts.
"""

import logging

from confluent_kafka import Consumer, KafkaError, Message, Producer

logger = logging.getLogger(__name__)

PRODUCER_DEFAULTS = {
    "acks": "all",
    "enable.idempotence": True,
    "retries": 10,
    "max.in.flight.requests.per.connection": 5,
    "compression.type": "lz4",
}

CONSUMER_DEFAULTS = {
    "enable.auto.commit": False,
    "auto.offset.reset": "latest",
    "max.poll.interval.ms": 300_000,
    "session.timeout.ms": 45_000,
    "heartbeat.interval.ms": 15_000,
}


def make_delivery_callback(errors_counter=None, produced_counter=None):
    """
    Return an ``on_delivery`` callback that logs failures and bumps the
    given Prometheus counters (either may be omitted).
    """

    def _on_delivery(err: KafkaError | None, msg: Message) -> None:
        if err is None:
            if produced_counter is not None:
                produced_counter.inc()
            return
        logger.error(
            "Kafka delivery failed",
            extra={"topic": msg.topic(), "key": msg.key(), "error": str(err)},
        )
        if errors_counter is not None:
            errors_counter.inc()

    return _on_delivery


def build_producer(bootstrap_servers: str, low_latency: bool = False) -> Producer:
    config = {
        **PRODUCER_DEFAULTS,
        "bootstrap.servers": bootstrap_servers,
        "linger.ms": 0 if low_latency else 5,
    }
    logger.info(
        "Creating Kafka producer",
        extra={"bootstrap": bootstrap_servers, "low_latency": low_latency},
    )
    return Producer(config)


def build_consumer(bootstrap_servers: str, group_id: str) -> Consumer:
    config = {
        **CONSUMER_DEFAULTS,
        "bootstrap.servers": bootstrap_servers,
        "group.id": group_id,
    }
    logger.info(
        "Creating Kafka consumer",
        extra={"bootstrap": bootstrap_servers, "group_id": group_id},
    )
    return Consumer(config)
