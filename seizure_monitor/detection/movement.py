"""
movement.py – Movement intensity classification.

Pure functions, no I/O: a window of accelerometer vectors is reduced to the
mean Euclidean magnitude, which is bucketed into a ``MovementIntensity`` tier.

Tiers
-----
* ``HIGH``   – average magnitude > 15
* ``MEDIUM`` – 8 < average magnitude <= 15
* ``LOW``    – average magnitude <= 8, or an empty window
"""

from typing import Iterable

from seizure_monitor.common.models import MovementIntensity, Vector3

HIGH_MAGNITUDE: float = 15.0
MEDIUM_MAGNITUDE: float = 8.0


def average_magnitude(vectors: Iterable[Vector3]) -> float:
    """Mean of ``sqrt(x² + y² + z²)`` over the window, ``0.0`` when empty."""
    magnitudes = [v.magnitude() for v in vectors]
    if not magnitudes:
        return 0.0
    return sum(magnitudes) / len(magnitudes)


def classify_movement(vectors: Iterable[Vector3]) -> MovementIntensity:
    """
    Map a window of movement vectors to an intensity tier.

    An empty window is ``LOW`` so missing accelerometer data can never raise a
    detection on its own.
    """
    avg = average_magnitude(vectors)
    if avg > HIGH_MAGNITUDE:
        return MovementIntensity.HIGH
    if avg > MEDIUM_MAGNITUDE:
        return MovementIntensity.MEDIUM
    return MovementIntensity.LOW
