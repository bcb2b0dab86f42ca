"""
test_simulator.py – Unit tests for the synthetic wearable simulator.

These tests run offline: no Kafka or PostgreSQL needed.

Coverage
--------
* Reading shape: one value per kind, user ids from the configured pool.
* Normal readings stay clear of every seizure indicator.
* Seizure episodes trip the indicators, and a simulated episode fed through a
  detector produces exactly one detection.
* invalid_ratio injects out-of-bounds heart rates that SensorSample rejects.
* Location payloads stay near home and validate as LocationUpdate.
"""

import itertools
import statistics

import pytest
from pydantic import ValidationError

from seizure_monitor.common.models import (
    EvaluationOutcome,
    LocationUpdate,
    SampleKind,
    SensorSample,
    Vector3,
)
from seizure_monitor.common.simulator import (
    HOME_LATITUDE,
    HOME_LONGITUDE,
    _build_baselines,
    location_payload,
    raw_payload,
    reading_stream,
    sample_stream,
    user_id_pool,
)
from seizure_monitor.detection.engine import SeizureDetector
from seizure_monitor.detection.recorder import EventRecorder
from seizure_monitor.detection.user_context import UserContextHolder


# ── user_id_pool ───────────────────────────────────────────────────────────────

class TestUserIdPool:

    def test_pool_size_and_range(self):
        assert user_id_pool(4) == [1, 2, 3, 4]


# ── reading_stream ─────────────────────────────────────────────────────────────

class TestReadingStream:

    def test_reading_has_one_value_per_kind(self):
        _, reading = next(reading_stream(user_count=3))
        assert set(reading) == set(SampleKind)
        assert isinstance(reading[SampleKind.MOVEMENT], Vector3)

    def test_user_ids_come_from_pool(self):
        stream = reading_stream(user_count=3)
        seen = {next(stream)[0] for _ in range(200)}
        assert seen <= {1, 2, 3}

    def test_normal_readings_stay_below_thresholds(self):
        stream = reading_stream(user_count=10, seizure_ratio=0.0)
        for _, reading in itertools.islice(stream, 500):
            assert reading[SampleKind.HEART_RATE] <= 115
            assert reading[SampleKind.SPO2] >= 93
            assert reading[SampleKind.MOVEMENT].magnitude() < 15

    def test_seizure_episode_trips_every_indicator(self):
        stream = reading_stream(user_count=1, seizure_ratio=1.0)
        for _, reading in itertools.islice(stream, 50):
            assert 130 <= reading[SampleKind.HEART_RATE] <= 170
            assert 84 <= reading[SampleKind.SPO2] <= 88
            assert reading[SampleKind.MOVEMENT].magnitude() > 15

    def test_invalid_ratio_injects_out_of_bounds_heart_rate(self):
        stream = reading_stream(user_count=2, invalid_ratio=1.0)
        for _, reading in itertools.islice(stream, 20):
            assert not (0 <= reading[SampleKind.HEART_RATE] <= 250)

    def test_bad_ratio_rejected(self):
        with pytest.raises(ValueError):
            next(reading_stream(user_count=1, seizure_ratio=1.5))


# ── sample_stream / raw_payload ────────────────────────────────────────────────

class TestSampleStream:

    def test_samples_are_validated_models(self):
        samples = list(itertools.islice(sample_stream(user_count=2), 30))
        assert all(isinstance(s, SensorSample) for s in samples)
        assert {s.kind for s in samples} == set(SampleKind)

    def test_timestamps_are_timezone_aware(self):
        assert next(sample_stream(user_count=1)).captured_at.tzinfo is not None

    def test_raw_payload_validates_for_movement(self):
        payload = raw_payload(5, SampleKind.MOVEMENT, Vector3(x=1, y=2, z=2))
        sample = SensorSample.model_validate(payload)
        assert sample.user_id == 5
        assert sample.value == Vector3(x=1, y=2, z=2)

    def test_raw_payload_for_invalid_value_fails_validation(self):
        payload = raw_payload(1, SampleKind.HEART_RATE, 300.0)
        with pytest.raises(ValidationError):
            SensorSample.model_validate(payload)


# ── Per-user baselines ─────────────────────────────────────────────────────────

class TestBaselines:

    def test_baselines_vary_across_users(self):
        baselines = _build_baselines(50)
        assert len({hr for hr, _ in baselines.values()}) >= 5

    def test_single_user_heart_rate_is_stable(self):
        stream = reading_stream(user_count=1, seizure_ratio=0.0)
        rates = [r[SampleKind.HEART_RATE] for _, r in itertools.islice(stream, 300)]
        assert statistics.stdev(rates) < 10


# ── End to end through a detector ──────────────────────────────────────────────

class TestSimulatedEpisodeDetection:

    def test_episode_produces_exactly_one_record(self):
        records = []
        detector = SeizureDetector(
            recorder=EventRecorder(lambda r: records.append(r) or True),
            dispatch_alert=lambda ctx: None,
            context=UserContextHolder(),
            cooldown_seconds=3600.0,
            alerts_enabled=False,
        )

        outcomes = []
        for sample in itertools.islice(sample_stream(user_count=1, seizure_ratio=1.0), 60):
            detector.ingest(sample)
            outcomes.append(detector.evaluate().outcome)

        detector.shutdown()
        assert outcomes.count(EvaluationOutcome.SEIZURE_DETECTED) == 1
        assert len(records) == 1


# ── location_payload ───────────────────────────────────────────────────────────

class TestLocationPayload:

    def test_validates_and_stays_near_home(self):
        for _ in range(50):
            update = LocationUpdate.model_validate(location_payload(4))
            assert update.user_id == 4
            assert abs(update.latitude - HOME_LATITUDE) <= 0.021
            assert abs(update.longitude - HOME_LONGITUDE) <= 0.021
