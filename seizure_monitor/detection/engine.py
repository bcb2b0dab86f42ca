"""
engine.py – Seizure detection state machine.

One ``SeizureDetector`` is constructed per monitored session.  It owns three
rolling ``SignalBuffer``s and a ``DetectionState``; persistence, alerting,
user context and timers are injected.

States
------
``idle`` ──(qualifying evaluation)──▶ ``latched`` ──(side effects done)──▶
``cooling_down`` ──(cooldown timer)──▶ ``idle``

Rule
----
Evaluated only when every buffer holds at least ``min_samples`` entries::

    avg_heart_rate > heart_rate_threshold   (120 bpm)
    OR avg_spo2 < spo2_threshold            (92 %)
    OR movement tier == HIGH

Any single indicator is sufficient.

Latching
--------
The ``idle → latched`` check-and-set runs under ``self._lock`` so that when
several threads evaluate at once exactly one of them wins the cycle.  Only the
winner persists the record and dispatches the alert; everybody else gets
``SUPPRESSED``.  Side effects run outside the lock so ingestion and other
evaluations never wait on PostgreSQL or Kafka.

Given an ``executor``, the winner only latches and builds the record; persist,
dispatch and cooldown arming run on the executor and the caller gets a
``latched`` result carrying a ``completion`` future.  Without one they run
inline in the winning thread.

Whatever happens to persistence or dispatch, the winner arms the cooldown in
a ``finally`` block, so the detector always finds its way back to ``idle``.
Each latch and each reset bumps ``self._generation``; a timer callback or a
late side-effect path whose generation is stale leaves the state alone.
"""

import logging
import threading
import time
from collections.abc import Mapping, Sequence
from concurrent.futures import Executor
from typing import Callable, Protocol

from seizure_monitor.common.config import settings
from seizure_monitor.common.models import (
    DetectionState,
    EvaluationOutcome,
    EvaluationResult,
    MovementIntensity,
    SampleKind,
    SeizureRecord,
    SensorSample,
    UserContext,
    Vector3,
)
from seizure_monitor.detection.movement import classify_movement
from seizure_monitor.detection.recorder import EventRecorder
from seizure_monitor.detection.signal_buffer import SignalBuffer
from seizure_monitor.detection.user_context import UserContextHolder, user_context

logger = logging.getLogger(__name__)

DispatchFn = Callable[[UserContext], None]


class CancellableTimer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], CancellableTimer]


def thread_timer(interval: float, callback: Callable[[], None]) -> threading.Timer:
    """Default timer factory: a daemon ``threading.Timer``."""
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


def _as_vector(value) -> Vector3:
    if isinstance(value, Vector3):
        return value
    if isinstance(value, Mapping):
        return Vector3.model_validate(value)
    if isinstance(value, Sequence) and len(value) == 3:
        x, y, z = value
        return Vector3(x=x, y=y, z=z)
    raise TypeError(f"movement value must be a Vector3, mapping or (x, y, z), got {value!r}")


class SeizureDetector:
    """
    Usage
    -----
    >>> detector = SeizureDetector(
    ...     recorder=EventRecorder(NullSeizureStore().persist),
    ...     dispatch_alert=NullAlertDispatcher().dispatch,
    ... )
    >>> detector.ingest_sample(SampleKind.HEART_RATE, 130)
    >>> result = detector.evaluate()
    >>> result.outcome
    <EvaluationOutcome.INSUFFICIENT_DATA: 'INSUFFICIENT_DATA'>
    """

    def __init__(
        self,
        recorder: EventRecorder,
        dispatch_alert: DispatchFn,
        context: UserContextHolder | None = None,
        *,
        buffer_capacity: int | None = None,
        buffer_max_age_seconds: float | None = None,
        min_samples: int | None = None,
        heart_rate_threshold: float | None = None,
        spo2_threshold: float | None = None,
        cooldown_seconds: float | None = None,
        alerts_enabled: bool | None = None,
        timer_factory: TimerFactory = thread_timer,
        clock: Callable[[], float] = time.monotonic,
        executor: Executor | None = None,
    ) -> None:
        self._recorder = recorder
        self._executor = executor
        self._dispatch_alert = dispatch_alert
        self._context = context if context is not None else user_context
        self._timer_factory = timer_factory

        capacity = settings.buffer_capacity if buffer_capacity is None else buffer_capacity
        max_age = (
            settings.buffer_max_age_seconds
            if buffer_max_age_seconds is None
            else buffer_max_age_seconds
        )
        self.min_samples = settings.min_samples if min_samples is None else min_samples
        self.heart_rate_threshold = (
            settings.heart_rate_threshold if heart_rate_threshold is None else heart_rate_threshold
        )
        self.spo2_threshold = settings.spo2_threshold if spo2_threshold is None else spo2_threshold
        self.cooldown_seconds = (
            settings.cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.alerts_enabled = settings.alerts_enabled if alerts_enabled is None else alerts_enabled

        self._buffers: dict[SampleKind, SignalBuffer] = {
            kind: SignalBuffer(capacity, max_age_seconds=max_age, clock=clock)
            for kind in SampleKind
        }

        self._lock = threading.Lock()
        self._state = DetectionState.IDLE
        self._generation = 0
        self._timer: CancellableTimer | None = None

    # Inspection
    # ===================================================================

    @property
    def state(self) -> DetectionState:
        with self._lock:
            return self._state

    @property
    def user_context(self) -> UserContext:
        return self._context.get_user_data()

    def buffer(self, kind: SampleKind) -> SignalBuffer:
        return self._buffers[SampleKind(kind)]

    # Ingestion
    # ===================================================================

    def ingest_sample(self, kind: SampleKind | str, value) -> None:
        """Fold one value into the buffer for ``kind``.  Never evaluates."""
        kind = SampleKind(kind)
        if kind is SampleKind.MOVEMENT:
            self._buffers[kind].push(_as_vector(value))
        else:
            self._buffers[kind].push(float(value))

    def ingest(self, sample: SensorSample) -> None:
        self.ingest_sample(sample.kind, sample.value)

    # Session control
    # ===================================================================

    def set_user_data(
        self,
        email: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        user_id: int | None = None,
    ) -> UserContext:
        """
        Overwrite the user context and force the detector back to ``idle``.

        Buffers are also cleared when the user changes, so one user's
        readings can never trigger a record for another.
        """
        previous = self._context.get_user_data()
        context = self._context.set_user_data(email, latitude, longitude, user_id)
        self.reset(clear_buffers=context.user_id != previous.user_id)
        return context

    def update_location(self, latitude: float, longitude: float) -> UserContext:
        """Record a new last known position.  State and buffers are untouched."""
        return self._context.update_location(latitude, longitude)

    def reset(self, clear_buffers: bool = False) -> None:
        """Cancel any pending cooldown and return to ``idle`` immediately."""
        with self._lock:
            self._generation += 1
            timer, self._timer = self._timer, None
            previous = self._state
            self._state = DetectionState.IDLE
        if timer is not None:
            timer.cancel()
        if clear_buffers:
            for buf in self._buffers.values():
                buf.clear()
        logger.info(
            "Detector reset",
            extra={"previous_state": previous.value, "cleared_buffers": clear_buffers},
        )

    def shutdown(self) -> None:
        with self._lock:
            self._generation += 1
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    # Evaluation
    # ===================================================================

    def is_seizure(
        self,
        avg_heart_rate: float,
        avg_spo2: float,
        movement: MovementIntensity,
    ) -> bool:
        return (
            avg_heart_rate > self.heart_rate_threshold
            or avg_spo2 < self.spo2_threshold
            or movement is MovementIntensity.HIGH
        )

    def evaluate(self, note: str | None = None) -> EvaluationResult:
        """
        Apply the rule to the current buffer contents.

        Safe to call from several threads at once.  Never raises because of
        the persistence or alert collaborators; their failures come back as
        ``persist_error`` / ``dispatch_error``.
        """
        heart_rate = self._buffers[SampleKind.HEART_RATE]
        spo2 = self._buffers[SampleKind.SPO2]
        movement = self._buffers[SampleKind.MOVEMENT]

        if not all(buf.is_ready(self.min_samples) for buf in (heart_rate, spo2, movement)):
            logger.debug("Not enough data to evaluate")
            return EvaluationResult(
                outcome=EvaluationOutcome.INSUFFICIENT_DATA,
                state=self.state,
            )

        avg_heart_rate = heart_rate.average()
        avg_spo2 = spo2.average()
        tier = classify_movement(movement.snapshot())
        aggregates = {
            "avg_heart_rate": avg_heart_rate,
            "avg_spo2": avg_spo2,
            "movement_intensity": tier,
        }

        if not self.is_seizure(avg_heart_rate, avg_spo2, tier):
            return EvaluationResult(
                outcome=EvaluationOutcome.NO_SEIZURE,
                state=self.state,
                **aggregates,
            )

        with self._lock:
            if self._state is not DetectionState.IDLE:
                return EvaluationResult(
                    outcome=EvaluationOutcome.SUPPRESSED,
                    state=self._state,
                    **aggregates,
                )
            self._state = DetectionState.LATCHED
            self._generation += 1
            generation = self._generation

        context = self._context.get_user_data()
        logger.warning(
            "Seizure detected",
            extra={
                "user_id": context.user_id,
                "avg_heart_rate": round(avg_heart_rate, 1),
                "avg_spo2": round(avg_spo2, 1),
                "movement": tier.value,
            },
        )

        try:
            record = self._recorder.build(avg_heart_rate, avg_spo2, tier, context, note)
        except Exception:
            self._arm_cooldown(generation)
            raise

        if self._executor is None:
            return self._complete_cycle(generation, context, record, aggregates)

        try:
            completion = self._executor.submit(
                self._complete_cycle, generation, context, record, aggregates
            )
        except RuntimeError:
            # Executor already shut down
            logger.warning(
                "Side-effect executor unavailable, completing cycle inline",
                extra={"user_id": context.user_id},
            )
            return self._complete_cycle(generation, context, record, aggregates)

        return EvaluationResult(
            outcome=EvaluationOutcome.SEIZURE_DETECTED,
            state=DetectionState.LATCHED,
            record=record,
            completion=completion,
            **aggregates,
        )

    def _complete_cycle(
        self,
        generation: int,
        context: UserContext,
        record: SeizureRecord,
        aggregates: dict,
    ) -> EvaluationResult:
        """Persist, dispatch, then arm the cooldown whatever happened."""
        persisted = None
        persist_error = None
        dispatched = False
        dispatch_error = None
        try:
            outcome = self._recorder.persist(record)
            persisted = outcome.persisted
            persist_error = outcome.error

            if self.alerts_enabled:
                try:
                    self._dispatch_alert(context)
                    dispatched = True
                except Exception as exc:
                    logger.exception(
                        "Failed to dispatch seizure alert",
                        extra={"user_id": context.user_id},
                    )
                    dispatch_error = str(exc) or type(exc).__name__
            else:
                logger.warning(
                    "Alerts disabled, seizure alert not dispatched",
                    extra={"user_id": context.user_id},
                )
        finally:
            state = self._arm_cooldown(generation)

        return EvaluationResult(
            outcome=EvaluationOutcome.SEIZURE_DETECTED,
            state=state,
            record=record,
            persisted=persisted,
            persist_error=persist_error,
            alert_dispatched=dispatched,
            dispatch_error=dispatch_error,
            **aggregates,
        )

    # Cooldown
    # ===================================================================

    def _arm_cooldown(self, generation: int) -> DetectionState:
        with self._lock:
            if generation != self._generation:
                # reset() ran while the side effects were in flight
                return self._state
            if self.cooldown_seconds <= 0:
                self._state = DetectionState.IDLE
                return self._state
            # The callback takes the same lock, so it cannot observe the state
            # before it is set below.
            try:
                timer = self._timer_factory(
                    self.cooldown_seconds,
                    lambda: self._on_cooldown_elapsed(generation),
                )
                timer.start()
            except Exception:
                logger.exception("Could not start cooldown timer, re-arming detector now")
                self._state = DetectionState.IDLE
                return self._state
            self._timer = timer
            self._state = DetectionState.COOLING_DOWN
            return self._state

    def _on_cooldown_elapsed(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not DetectionState.COOLING_DOWN:
                return
            self._state = DetectionState.IDLE
            self._timer = None
        logger.info("Cooldown elapsed, detector re-armed")
