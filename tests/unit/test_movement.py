"""
test_movement.py – Unit tests for movement intensity classification.

The tier boundaries (8 and 15) are part of the detection contract, so the
edges are tested explicitly.
"""

import pytest

from seizure_monitor.common.models import MovementIntensity, Vector3
from seizure_monitor.detection.movement import average_magnitude, classify_movement


class TestClassifyMovement:

    def test_high(self):
        assert classify_movement([Vector3(x=0, y=0, z=16)]) is MovementIntensity.HIGH

    def test_medium(self):
        assert classify_movement([Vector3(x=0, y=0, z=10)]) is MovementIntensity.MEDIUM

    def test_low(self):
        assert classify_movement([Vector3(x=0, y=0, z=5)]) is MovementIntensity.LOW

    def test_empty_window_is_low(self):
        """Missing accelerometer data must never raise a detection."""
        assert classify_movement([]) is MovementIntensity.LOW

    def test_exactly_fifteen_is_medium(self):
        assert classify_movement([Vector3(z=15)]) is MovementIntensity.MEDIUM

    def test_exactly_eight_is_low(self):
        assert classify_movement([Vector3(z=8)]) is MovementIntensity.LOW

    def test_uses_euclidean_magnitude(self):
        # |(9, 12, 0)| = 15, |(12, 16, 0)| = 20 → mean 17.5
        vectors = [Vector3(x=9, y=12, z=0), Vector3(x=12, y=16, z=0)]
        assert classify_movement(vectors) is MovementIntensity.HIGH

    def test_averages_over_window(self):
        # 20 and 0 average to 10 → MEDIUM, though one sample alone is HIGH
        vectors = [Vector3(z=20), Vector3(z=0)]
        assert classify_movement(vectors) is MovementIntensity.MEDIUM

    def test_accepts_generator(self):
        assert classify_movement(Vector3(z=16) for _ in range(3)) is MovementIntensity.HIGH


class TestAverageMagnitude:

    def test_empty_is_zero(self):
        assert average_magnitude([]) == 0.0

    def test_three_four_five(self):
        assert average_magnitude([Vector3(x=3, y=4, z=0)]) == pytest.approx(5.0)

    def test_negative_components(self):
        assert average_magnitude([Vector3(x=-3, y=-4, z=0)]) == pytest.approx(5.0)
