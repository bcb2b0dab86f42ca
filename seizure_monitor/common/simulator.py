"""
simulator.py – Synthetic wearable data generator.

Design
------
Each simulated user gets a **stable resting baseline** (heart rate and SpO2)
when the simulator starts, so consecutive readings from the same user look
physiologically coherent.  Every iteration picks a user and emits one reading
of each kind (heart rate, SpO2, movement).

With probability ``seizure_ratio`` per reading, an idle user enters a
**seizure episode** lasting ``episode_length`` readings.  During an episode
the user reports high heart rate (130–170 bpm), low oxygen saturation
(84–88 %) and violent movement (magnitude well above 15), which is enough to
trip every indicator of the detection rule.

Usage
-----
>>> stream = sample_stream(user_count=3, seizure_ratio=0.01)
>>> sample = next(stream)
>>> print(sample.user_id, sample.kind, sample.value)
"""

import math
import random
from datetime import datetime, timezone
from typing import Iterator
from uuid import uuid4

from seizure_monitor.common.models import SampleKind, SensorSample, Vector3

# Episode ranges
SEIZURE_HEART_RATE = (130, 170)
SEIZURE_SPO2 = (84, 88)
SEIZURE_MAGNITUDE = (18.0, 30.0)
GRAVITY = 9.81


# User profile generation
# =======================================================================

def user_id_pool(user_count: int) -> list[int]:
    return list(range(1, user_count + 1))


def _assign_baseline() -> tuple[int, float]:
    """
    Resting heart rate ~ N(72, 10) clipped to [50, 100] and resting SpO2
    ~ N(97.5, 1) clipped to [94, 100].
    """
    heart_rate = int(max(50, min(100, random.gauss(mu=72, sigma=10))))
    spo2 = round(max(94.0, min(100.0, random.gauss(mu=97.5, sigma=1.0))), 1)
    return heart_rate, spo2


def _build_baselines(user_count: int) -> dict[int, tuple[int, float]]:
    return {uid: _assign_baseline() for uid in user_id_pool(user_count)}


# Sampling
# =======================================================================

def _random_vector(magnitude: float) -> Vector3:
    """A vector of the given magnitude pointing in a random direction."""
    theta = random.uniform(0, 2 * math.pi)
    phi = random.uniform(0, math.pi)
    return Vector3(
        x=magnitude * math.sin(phi) * math.cos(theta),
        y=magnitude * math.sin(phi) * math.sin(theta),
        z=magnitude * math.cos(phi),
    )


def _normal_reading(resting_hr: int, resting_spo2: float) -> dict[SampleKind, object]:
    heart_rate = max(45, min(115, resting_hr + random.gauss(mu=0, sigma=5)))
    spo2 = max(93.0, min(100.0, resting_spo2 + random.gauss(mu=0, sigma=0.5)))
    # Wrist at rest or walking: gravity plus a little motion
    movement = _random_vector(min(12.0, GRAVITY + abs(random.gauss(mu=0, sigma=1.5))))
    return {
        SampleKind.HEART_RATE: round(heart_rate, 1),
        SampleKind.SPO2: round(spo2, 1),
        SampleKind.MOVEMENT: movement,
    }


def _seizure_reading() -> dict[SampleKind, object]:
    return {
        SampleKind.HEART_RATE: float(random.randint(*SEIZURE_HEART_RATE)),
        SampleKind.SPO2: float(random.randint(*SEIZURE_SPO2)),
        SampleKind.MOVEMENT: _random_vector(random.uniform(*SEIZURE_MAGNITUDE)),
    }


def _invalid_reading(reading: dict[SampleKind, object]) -> dict[SampleKind, object]:
    """Replace the heart rate with a value outside the hard bounds."""
    return {**reading, SampleKind.HEART_RATE: random.choice([-10.0, 300.0])}


# Public streaming generator
# =======================================================================

def reading_stream(
    user_count: int,
    seizure_ratio: float = 0.0,
    invalid_ratio: float = 0.0,
    episode_length: int = 8,
) -> Iterator[tuple[int, dict[SampleKind, object]]]:
    """
    Infinite generator of ``(user_id, {kind: value})`` readings.

    Values are raw (not yet validated) so that ``invalid_ratio`` can inject
    out-of-bounds readings which ``SensorSample`` would refuse to build.
    """
    if not (0.0 <= seizure_ratio <= 1.0):
        raise ValueError("seizure_ratio must be in [0.0, 1.0]")
    if episode_length < 1:
        raise ValueError("episode_length must be >= 1")

    users = user_id_pool(user_count)
    baselines = _build_baselines(user_count)
    episodes: dict[int, int] = {uid: 0 for uid in users}

    while True:
        user_id = random.choice(users)

        if episodes[user_id] == 0 and random.random() < seizure_ratio:
            episodes[user_id] = episode_length

        if episodes[user_id] > 0:
            episodes[user_id] -= 1
            reading = _seizure_reading()
        else:
            reading = _normal_reading(*baselines[user_id])

        if random.random() < invalid_ratio:
            reading = _invalid_reading(reading)

        yield user_id, reading


def sample_stream(
    user_count: int,
    seizure_ratio: float = 0.0,
    episode_length: int = 8,
) -> Iterator[SensorSample]:
    """
    Infinite generator of validated ``SensorSample`` objects.

    Each reading is expanded into three samples (heart rate, SpO2, movement)
    sharing the same ``captured_at`` timestamp.
    """
    for user_id, reading in reading_stream(
        user_count,
        seizure_ratio=seizure_ratio,
        episode_length=episode_length,
    ):
        captured_at = datetime.now(timezone.utc)
        for kind, value in reading.items():
            yield SensorSample(
                user_id=user_id,
                kind=kind,
                value=value,
                captured_at=captured_at,
            )


def raw_payload(user_id: int, kind: SampleKind, value, captured_at: datetime | None = None) -> dict:
    """
    Build the JSON payload for one sample without validating it.

    Used by the producer so that deliberately invalid readings still reach the
    topic and exercise the monitor's quarantine path.
    """
    if isinstance(value, Vector3):
        value = value.model_dump()
    return {
        "sample_id": str(uuid4()),
        "user_id": user_id,
        "kind": kind.value,
        "value": value,
        "captured_at": (captured_at or datetime.now(timezone.utc)).isoformat(),
    }


# Home position the simulated users wander around (Odense)
HOME_LATITUDE = 55.4038
HOME_LONGITUDE = 10.4024


def location_payload(user_id: int, captured_at: datetime | None = None) -> dict:
    """A last-known-location message within roughly 2 km of home."""
    return {
        "user_id": user_id,
        "latitude": round(HOME_LATITUDE + random.uniform(-0.02, 0.02), 6),
        "longitude": round(HOME_LONGITUDE + random.uniform(-0.02, 0.02), 6),
        "captured_at": (captured_at or datetime.now(timezone.utc)).isoformat(),
    }
