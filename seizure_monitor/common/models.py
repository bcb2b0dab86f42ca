"""
models.py – Shared Pydantic data-models used across the monitor.

Design decisions
----------------
* All models are **frozen** (immutable after creation) so they can safely be
  passed between the poll loop, the tick thread and cooldown timers.
* Validators enforce physiological bounds at the point of data entry rather
  than scattering checks throughout the detector.
* ``InvalidSample`` gives the invalid / DLQ topics a typed schema so downstream
  consumers can parse and act on error payloads predictably.
"""

import math
from concurrent.futures import Future
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enumerations
# =======================================================================

class SampleKind(str, Enum):
    HEART_RATE = "heart_rate"
    SPO2 = "spo2"
    MOVEMENT = "movement"


class MovementIntensity(str, Enum):
    """Discrete tier derived from the average movement magnitude."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DetectionState(str, Enum):
    IDLE = "idle"
    LATCHED = "latched"
    COOLING_DOWN = "cooling_down"


class EvaluationOutcome(str, Enum):
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    NO_SEIZURE = "NO_SEIZURE"
    SEIZURE_DETECTED = "SEIZURE_DETECTED"
    SUPPRESSED = "SUPPRESSED"


# Sensor input
# =======================================================================

class Vector3(BaseModel):
    """One accelerometer reading (x, y, z)."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def magnitude(self) -> float:
        return math.sqrt(self.x ** 2 + self.y ** 2 + self.z ** 2)


class SensorSample(BaseModel):
    """
    A single measurement pushed by the wearable ingestion path.

    Fields
    ------
    sample_id   : Unique identifier for this reading (UUID v4, auto-generated).
    user_id     : Monitored user the reading belongs to.
    kind        : ``heart_rate``, ``spo2`` or ``movement``.
    value       : bpm / percent for scalar kinds, a ``Vector3`` for movement.
    captured_at : UTC wall-clock time the reading was captured.
    """

    model_config = ConfigDict(frozen=True)

    sample_id: UUID = Field(default_factory=uuid4)
    user_id: int = Field(default=1, ge=1)
    kind: SampleKind
    value: float | Vector3
    captured_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_value_for_kind(self) -> "SensorSample":
        """Reject values whose shape or range does not match ``kind``."""
        if self.kind is SampleKind.MOVEMENT:
            if not isinstance(self.value, Vector3):
                raise ValueError("movement samples must carry an {x, y, z} vector")
            return self

        if isinstance(self.value, Vector3):
            raise ValueError(f"{self.kind.value} samples must carry a number")

        if self.kind is SampleKind.HEART_RATE and not (0 <= self.value <= 250):
            raise ValueError(
                f"heart_rate {self.value} is outside hard physiological bounds [0, 250]"
            )
        if self.kind is SampleKind.SPO2 and not (0 <= self.value <= 100):
            raise ValueError(f"spo2 {self.value} is outside [0, 100]")
        return self


# User context
# =======================================================================

class UserContext(BaseModel):
    """Snapshot of the active user's identity and last known coordinates."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    latitude: float
    longitude: float


class LocationUpdate(BaseModel):
    """Last known position of a user, published by the phone's location service."""

    model_config = ConfigDict(frozen=True)

    user_id: int = Field(ge=1)
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    captured_at: datetime = Field(default_factory=_utcnow)


# Seizure record (persisted) and alert (published)
# =======================================================================

class SeizureRecord(BaseModel):
    """
    The persisted artefact of one detection.

    ``timestamp`` serialises to ISO-8601 via ``model_dump(mode="json")``.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    timestamp: datetime
    heart_rate: float = Field(description="Average heart rate (bpm) at detection time.")
    spo2: float = Field(description="Average SpO2 (%) at detection time.")
    movement_intensity: str = Field(description="Movement tier as text: LOW, MEDIUM or HIGH.")
    note: str = ""


class SeizureAlert(BaseModel):
    """Payload written to the alert topic for delivery to the user's mates."""

    model_config = ConfigDict(frozen=True)

    alert_id: UUID = Field(default_factory=uuid4)
    user_id: int
    email: str
    latitude: float
    longitude: float
    title: str = "Seizure Detected"
    body: str = "A seizure has been detected based on your health data."
    detected_at: datetime = Field(default_factory=_utcnow)


# Evaluation result (returned to the caller of SeizureDetector.evaluate)
# =======================================================================

class EvaluationResult(BaseModel):
    """
    What one evaluation call observed and did.

    Failures of the persistence or alert collaborators are reported here as
    text; they never raise out of ``evaluate()``.

    When the detector hands its side effects to an executor, the winning
    evaluation returns at once in state ``latched`` with ``completion`` set.
    That future resolves to the full result once the record has been
    persisted, the alert dispatched and the cooldown armed.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    outcome: EvaluationOutcome
    state: DetectionState
    avg_heart_rate: float | None = None
    avg_spo2: float | None = None
    movement_intensity: MovementIntensity | None = None
    record: SeizureRecord | None = None
    persisted: bool | None = None
    persist_error: str | None = None
    alert_dispatched: bool = False
    dispatch_error: str | None = None
    completion: Future | None = Field(default=None, exclude=True, repr=False)


# Invalid / DLQ envelope
# =======================================================================

class InvalidSample(BaseModel):
    """
    Envelope written to ``events.invalid.v1`` and ``events.dlq.v1`` topics.

    Fields
    ------
    error       : Human-readable description of why the sample was rejected.
    raw         : The original raw message payload as a string for debugging.
    error_type  : ``VALIDATION`` (schema/domain issue) or ``PROCESSING`` (unexpected error).
    """

    model_config = ConfigDict(frozen=True)

    error: str = Field(description="Error message explaining the rejection reason.")
    raw: str = Field(description="Original raw Kafka message value (UTF-8 string).")
    error_type: str = Field(
        default="VALIDATION",
        description="'VALIDATION' for schema/domain errors, 'PROCESSING' for unexpected failures.",
    )
