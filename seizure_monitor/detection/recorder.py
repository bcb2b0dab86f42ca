"""
recorder.py – Builds a ``SeizureRecord`` and hands it to the persistence sink.

The sink is any ``(SeizureRecord) -> bool`` callable (see ``sinks.py`` for the
PostgreSQL and no-op implementations).  ``build_and_persist()`` never raises:
an exception from the sink, or a ``False`` return, is reported on the
returned ``RecordOutcome`` so the detector can log it and carry on with its
cooldown cycle.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel, ConfigDict

from seizure_monitor.common.models import MovementIntensity, SeizureRecord, UserContext

logger = logging.getLogger(__name__)

PersistFn = Callable[[SeizureRecord], bool]


class RecordOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: SeizureRecord
    persisted: bool
    error: str | None = None


def default_note(heart_rate: float, spo2: float, movement: MovementIntensity | str) -> str:
    tier = movement.value if isinstance(movement, MovementIntensity) else movement
    return f"Seizure detected with HR: {heart_rate:.1f}, SpO2: {spo2:.1f}, Movement: {tier}"


class EventRecorder:
    """
    Usage
    -----
    >>> recorder = EventRecorder(persist=NullSeizureStore().persist)
    >>> outcome = recorder.build_and_persist(133.0, 97.0, MovementIntensity.LOW, ctx)
    >>> outcome.persisted
    True
    """

    def __init__(
        self,
        persist: PersistFn,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._persist = persist
        self._clock = clock

    def build(
        self,
        avg_heart_rate: float,
        avg_spo2: float,
        movement: MovementIntensity,
        context: UserContext,
        note: str | None = None,
    ) -> SeizureRecord:
        return SeizureRecord(
            user_id=context.user_id,
            timestamp=self._clock(),
            heart_rate=float(avg_heart_rate),
            spo2=float(avg_spo2),
            movement_intensity=movement.value,
            note=note if note else default_note(avg_heart_rate, avg_spo2, movement),
        )

    def build_and_persist(
        self,
        avg_heart_rate: float,
        avg_spo2: float,
        movement: MovementIntensity,
        context: UserContext,
        note: str | None = None,
    ) -> RecordOutcome:
        return self.persist(self.build(avg_heart_rate, avg_spo2, movement, context, note))

    def persist(self, record: SeizureRecord) -> RecordOutcome:
        """Hand an already built record to the sink; never raises."""
        try:
            ok = bool(self._persist(record))
        except Exception as exc:
            logger.exception(
                "Failed to persist seizure record",
                extra={"user_id": record.user_id},
            )
            return RecordOutcome(record=record, persisted=False, error=str(exc) or type(exc).__name__)

        if not ok:
            logger.warning(
                "Persistence sink rejected seizure record",
                extra={"user_id": record.user_id},
            )
            return RecordOutcome(record=record, persisted=False, error="persistence sink returned False")

        return RecordOutcome(record=record, persisted=True)
