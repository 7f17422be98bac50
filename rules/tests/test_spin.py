"""
Unit Tests for the spin wheel
"""

import pytest
from decimal import Decimal

from rules.spin import DEFAULT_SEGMENTS, SpinWheel, WheelSegment


class TestSegmentMapping:
    """Tests for mapping draws onto weighted segments."""

    def test_zero_maps_to_first_segment(self):
        assert SpinWheel().segment_for(0.0) == 0

    def test_boundary_belongs_to_next_segment(self):
        wheel = SpinWheel()

        assert wheel.segment_for(0.1999) == 0
        assert wheel.segment_for(0.2) == 1
        assert wheel.segment_for(0.3) == 2

    def test_top_of_range_maps_to_last_segment(self):
        assert SpinWheel().segment_for(0.9999999) == len(DEFAULT_SEGMENTS) - 1

    @pytest.mark.parametrize("draw", [-0.01, 1.0, 1.5])
    def test_out_of_range_rejected(self, draw):
        with pytest.raises(ValueError):
            SpinWheel().segment_for(draw)

    def test_probabilities_follow_weights(self):
        wheel = SpinWheel()

        assert wheel.probability(0) == pytest.approx(0.20)
        assert wheel.probability(5) == pytest.approx(0.01)
        assert sum(wheel.probability(i) for i in range(len(DEFAULT_SEGMENTS))) == pytest.approx(1.0)

    def test_default_amounts(self):
        assert [s.amount for s in DEFAULT_SEGMENTS] == [
            Decimal(v) for v in ("50.00", "100.00", "25.00", "200.00", "75.00", "500.00", "10.00", "150.00")
        ]


class TestWheelConfiguration:
    """Tests for wheel construction and rotation."""

    def test_empty_wheel_rejected(self):
        with pytest.raises(ValueError):
            SpinWheel(segments=())

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ValueError):
            SpinWheel(segments=(WheelSegment("x", Decimal("1"), 0),))

    def test_rotation_lands_on_segment_centre(self):
        wheel = SpinWheel()

        assert wheel.rotation_for(0) == pytest.approx(4 * 360 + 337.5)
        assert wheel.rotation_for(7) == pytest.approx(4 * 360 + 22.5)
        with pytest.raises(IndexError):
            wheel.rotation_for(8)

    def test_draw_uses_system_random(self):
        wheel = SpinWheel()

        assert all(0 <= wheel.draw() < len(DEFAULT_SEGMENTS) for _ in range(100))
