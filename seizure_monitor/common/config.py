"""
config.py – Runtime settings for the monitor, producer and generator.

Values come from environment variables (case-insensitive) or a local ``.env``
file.  Out-of-range values fail at import with a pydantic ``ValidationError``
naming the offending variable, before any service starts.

Usage
-----
>>> from seizure_monitor.common.config import settings
>>> print(settings.cooldown_seconds)
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Each field maps to the upper-cased environment variable of the same name.

    Sections
    --------
    kafka_*         – Kafka broker, topic names and consumer group
    postgres_*      – PostgreSQL connection parameters
    db_pool_*       – psycopg connection-pool sizing
    buffer_*        – Rolling signal buffer sizing
    *_threshold     – Seizure rule thresholds
    cooldown_*      – Refractory period after a detection
    monitor_*       – Identity and last known location of the monitored user
    sim_*           – Synthetic wearable simulation knobs
    log_level       – Level passed to logging.basicConfig
    prometheus_port – Port on which each service exposes /metrics
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Kafka
    kafka_bootstrap_servers: str = Field(
        default="localhost:19092",
        description="Kafka brokers as host:port, comma separated.",
    )
    kafka_topic_samples: str = Field(
        default="events.sensor.v1",
        description="Topic carrying raw wearable samples (heart rate, SpO2, movement).",
    )
    kafka_topic_locations: str = Field(
        default="events.location.v1",
        description="Topic carrying last known user positions from the phone.",
    )
    kafka_topic_alerts: str = Field(
        default="events.seizure-alert.v1",
        description="Topic where seizure alerts for mates are published.",
    )
    kafka_topic_invalid: str = Field(
        default="events.invalid.v1",
        description="Quarantine topic for samples that fail schema/domain validation.",
    )
    kafka_topic_dlq: str = Field(
        default="events.dlq.v1",
        description="Dead-letter queue for samples that caused unexpected processing errors.",
    )
    kafka_consumer_group_monitor: str = Field(
        default="cg.seizure-monitor.v1",
        description="Consumer group used by the seizure monitor service.",
    )

    # PostgreSQL
    postgres_host: str = Field(default="localhost")
    postgres_port: int = Field(default=55432, ge=1, le=65535)
    postgres_db: str = Field(default="epilepsy")
    postgres_user: str = Field(default="epilepsy_user")
    postgres_password: str = Field(default="epilepsy_pass")
    persistence_enabled: bool = Field(
        default=True,
        description="When false, seizure records go to a no-op store instead of PostgreSQL.",
    )

    # Connection pool
    db_pool_min: int = Field(
        default=1,
        ge=1,
        description="Connections the pool keeps open while idle.",
    )
    db_pool_max: int = Field(
        default=4,
        ge=1,
        description="Upper bound on concurrently open pool connections.",
    )

    # Signal buffers
    buffer_capacity: int = Field(
        default=20,
        ge=1,
        description="Maximum number of samples retained per signal (oldest evicted first).",
    )
    buffer_max_age_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Optional rolling time window; samples older than this are evicted on push.",
    )
    min_samples: int = Field(
        default=5,
        ge=1,
        description="Samples required in every buffer before the rule is evaluated.",
    )

    # Detection rule
    heart_rate_threshold: float = Field(
        default=120.0,
        description="Average heart rate (bpm) strictly above this indicates a seizure.",
    )
    spo2_threshold: float = Field(
        default=92.0,
        description="Average SpO2 (%) strictly below this indicates a seizure.",
    )
    cooldown_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Refractory period after a detection during which no new record is created.",
    )
    evaluation_interval_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Period of the background evaluation tick in the monitor service.",
    )
    alerts_enabled: bool = Field(
        default=True,
        description="Policy flag: when false, detections are recorded but no alert is dispatched.",
    )
    side_effect_workers: int = Field(
        default=4,
        ge=1,
        description="Threads persisting records and dispatching alerts off the poll loop.",
    )

    # Monitored user
    monitor_user_id: int = Field(default=1, ge=1)
    monitor_user_email: str = Field(default="default@user.com")
    monitor_latitude: float = Field(default=55.4038, ge=-90.0, le=90.0)
    monitor_longitude: float = Field(default=10.4024, ge=-180.0, le=180.0)

    # Simulation
    sim_user_count: int = Field(
        default=5,
        ge=1,
        description="Number of synthetic monitored users.",
    )
    sim_samples_per_second: int = Field(
        default=30,
        ge=1,
        description="Target sample rate across all users (normal mode).",
    )
    sim_sleep_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between producer batches, in seconds.",
    )
    sim_seizure_ratio: float = Field(
        default=0.002,
        ge=0.0,
        le=1.0,
        description="Per-sample probability that a user starts a simulated seizure episode.",
    )
    sim_invalid_ratio: float = Field(
        default=0.01,
        ge=0.0,
        le=1.0,
        description="Fraction of generated samples that are deliberately out-of-range.",
    )

    # Observability
    log_level: str = Field(
        default="INFO",
        description="DEBUG, INFO, WARNING, ERROR or CRITICAL.",
    )
    prometheus_port: int = Field(
        default=8000,
        ge=1024,
        le=65535,
        description="Base /metrics port; the monitor listens on this value plus 3.",
    )


# Shared instance; import this rather than constructing Settings().
settings = Settings()
