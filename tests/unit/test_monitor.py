"""
test_monitor.py – Unit tests for the monitor service's processing helpers.

No Kafka or PostgreSQL: ``process_message``, ``process_location_message`` and
``tick`` are driven directly with raw JSON strings and a registry wired to
recording fakes.
"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from seizure_monitor.common.config import settings
from seizure_monitor.common.models import DetectionState, EvaluationOutcome, SampleKind
from seizure_monitor.common.simulator import location_payload, raw_payload
from seizure_monitor.monitor.monitor import (
    DetectorRegistry,
    process_location_message,
    process_message,
    tick,
)


class _NeverFires:
    def __init__(self, interval, callback):
        pass

    def start(self):
        pass

    def cancel(self):
        pass


def _registry(records, alerts):
    return DetectorRegistry(
        lambda r: records.append(r) or True,
        alerts.append,
        timer_factory=_NeverFires,
        alerts_enabled=True,
    )


def _detected_count() -> float:
    return REGISTRY.get_sample_value(
        "seizure_evaluations_total", {"outcome": "SEIZURE_DETECTED"}
    ) or 0.0


def _feed(registry, user_id, heart_rate, spo2=98.0, movement=(0.0, 0.0, 1.0), n=5):
    results = []
    x, y, z = movement
    for _ in range(n):
        for kind, value in (
            (SampleKind.HEART_RATE, heart_rate),
            (SampleKind.SPO2, spo2),
            (SampleKind.MOVEMENT, {"x": x, "y": y, "z": z}),
        ):
            raw = json.dumps(raw_payload(user_id, kind, value))
            results.append(process_message(raw, registry))
    return results


class TestProcessMessage:

    def test_detection_after_five_readings_of_each_kind(self):
        records, alerts = [], []
        results = _feed(_registry(records, alerts), user_id=7, heart_rate=140)
        outcomes = [r.outcome for r in results]
        assert outcomes[:14] == [EvaluationOutcome.INSUFFICIENT_DATA] * 14
        assert outcomes[14] is EvaluationOutcome.SEIZURE_DETECTED
        assert len(records) == 1 and records[0].user_id == 7
        assert len(alerts) == 1

    def test_normal_readings_produce_no_record(self):
        records, alerts = [], []
        results = _feed(_registry(records, alerts), user_id=2, heart_rate=70)
        assert results[-1].outcome is EvaluationOutcome.NO_SEIZURE
        assert records == [] and alerts == []

    def test_malformed_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            process_message("{not json", _registry([], []))

    def test_out_of_bounds_sample_raises_validation_error(self):
        raw = json.dumps(raw_payload(1, SampleKind.HEART_RATE, 300.0))
        with pytest.raises(ValidationError):
            process_message(raw, _registry([], []))


class TestDetectorRegistry:

    def test_one_detector_per_user(self):
        registry = _registry([], [])
        assert registry.get(1) is registry.get(1)
        assert registry.get(1) is not registry.get(2)
        assert len(registry.all()) == 2

    def test_users_are_isolated(self):
        records, alerts = [], []
        registry = _registry(records, alerts)
        _feed(registry, user_id=3, heart_rate=150)
        results = _feed(registry, user_id=4, heart_rate=70)
        assert results[-1].outcome is EvaluationOutcome.NO_SEIZURE
        assert [r.user_id for r in records] == [3]

    def test_monitored_user_gets_configured_context(self):
        registry = _registry([], [])
        detector = registry.get(settings.monitor_user_id)
        ctx = detector.user_context
        assert ctx.email == settings.monitor_user_email
        assert ctx.latitude == settings.monitor_latitude

    def test_other_users_get_default_context_with_own_id(self):
        registry = _registry([], [])
        ctx = registry.get(settings.monitor_user_id + 100).user_context
        assert ctx.user_id == settings.monitor_user_id + 100
        assert ctx.email == "default@user.com"


class TestTick:

    def test_tick_evaluates_every_detector(self):
        records, alerts = [], []
        registry = _registry(records, alerts)
        _feed(registry, user_id=5, heart_rate=70)
        _feed(registry, user_id=6, heart_rate=70, n=2)
        outcomes = sorted(r.outcome.value for r in tick(registry))
        assert outcomes == ["INSUFFICIENT_DATA", "NO_SEIZURE"]

    def test_tick_is_suppressed_during_cooldown(self):
        records, alerts = [], []
        registry = _registry(records, alerts)
        _feed(registry, user_id=8, heart_rate=150)
        assert [r.outcome for r in tick(registry)] == [EvaluationOutcome.SUPPRESSED]
        assert len(records) == 1


class TestSideEffectsOffThePollLoop:

    @pytest.fixture
    def executor(self):
        pool = ThreadPoolExecutor(max_workers=2)
        yield pool
        pool.shutdown(wait=True)

    def test_slow_persistence_does_not_hold_up_the_next_message(self, executor):
        gate = threading.Event()
        records, alerts = [], []

        def slow_persist(record):
            gate.wait(timeout=5)
            records.append(record)
            return True

        registry = DetectorRegistry(
            slow_persist,
            alerts.append,
            timer_factory=_NeverFires,
            alerts_enabled=True,
            executor=executor,
        )

        started = time.monotonic()
        results = _feed(registry, user_id=9, heart_rate=150)
        detection = results[-1]
        assert detection.outcome is EvaluationOutcome.SEIZURE_DETECTED
        assert detection.state is DetectionState.LATCHED

        follow_up = process_message(
            json.dumps(raw_payload(10, SampleKind.HEART_RATE, 72.0)), registry
        )
        assert follow_up.outcome is EvaluationOutcome.INSUFFICIENT_DATA
        assert time.monotonic() - started < 2.0
        assert records == []

        gate.set()
        final = detection.completion.result(timeout=5)
        assert final.persisted is True
        assert len(records) == 1 and len(alerts) == 1
        assert registry.get(9).state is DetectionState.COOLING_DOWN

    def test_detection_is_counted_once_its_side_effects_finish(self, executor):
        before = _detected_count()
        registry = DetectorRegistry(
            lambda r: True,
            lambda ctx: None,
            timer_factory=_NeverFires,
            executor=executor,
        )
        detection = _feed(registry, user_id=11, heart_rate=150)[-1]
        detection.completion.result(timeout=5)
        executor.shutdown(wait=True)
        assert _detected_count() == before + 1


class TestLocationMessages:

    def test_location_update_moves_user_context(self):
        registry = _registry([], [])
        raw = json.dumps({"user_id": 12, "latitude": 55.39, "longitude": 10.38})
        process_location_message(raw, registry)
        ctx = registry.get(12).user_context
        assert (ctx.latitude, ctx.longitude) == (55.39, 10.38)
        assert ctx.user_id == 12

    def test_alert_carries_latest_location(self):
        records, alerts = [], []
        registry = _registry(records, alerts)
        process_location_message(json.dumps(location_payload(13)), registry)
        process_location_message(
            json.dumps({"user_id": 13, "latitude": 55.41, "longitude": 10.41}), registry
        )
        _feed(registry, user_id=13, heart_rate=150)
        assert (alerts[0].latitude, alerts[0].longitude) == (55.41, 10.41)

    def test_location_update_does_not_reset_detector(self):
        records, alerts = [], []
        registry = _registry(records, alerts)
        _feed(registry, user_id=14, heart_rate=150)
        process_location_message(
            json.dumps({"user_id": 14, "latitude": 1.0, "longitude": 2.0}), registry
        )
        assert registry.get(14).state is DetectionState.COOLING_DOWN

    def test_out_of_range_latitude_raises_validation_error(self):
        raw = json.dumps({"user_id": 1, "latitude": 91.0, "longitude": 0.0})
        with pytest.raises(ValidationError):
            process_location_message(raw, _registry([], []))


class TestSignalHandling:

    def test_signal_requests_shutdown(self):
        from seizure_monitor.monitor import monitor

        try:
            monitor._handle_signal(15, None)
            assert monitor._shutdown.is_set()
        finally:
            monitor._shutdown.clear()
