"""Tests for moisture calibration."""
import pytest
from irrigation_hub.sensors.calibration import moisture, is_reading_plausible


class TestMoisture:
    """Test raw sample to moisture conversion."""

    def test_midpoint_reading(self):
        """A sample between dry and wet interpolates linearly."""
        assert moisture(23110, 26000, 12000) == pytest.approx(0.2064, abs=1e-4)

    def test_calibration_endpoints(self):
        assert moisture(26000, 26000, 12000) == 0.0
        assert moisture(12000, 26000, 12000) == 1.0

    def test_clamped_to_unit_range(self):
        """Samples beyond the calibration points are clamped."""
        assert moisture(30000, 26000, 12000) == 0.0
        assert moisture(5000, 26000, 12000) == 1.0

    def test_degenerate_calibration(self):
        """raw_dry == raw_wet yields 0.0 rather than dividing by zero."""
        assert moisture(20000, 15000, 15000) == 0.0

    def test_inverted_calibration_still_interpolates(self):
        """A sensor that reads higher when wet is handled by the same formula."""
        assert moisture(15000, 10000, 20000) == pytest.approx(0.5)


class TestPlausibility:
    """Test detection of disconnected or shorted sensors."""

    def test_in_range_is_plausible(self):
        assert is_reading_plausible(20000, 26000, 12000) is True

    def test_small_overshoot_is_plausible(self):
        assert is_reading_plausible(27000, 26000, 12000, margin=3000) is True

    def test_floating_input_is_implausible(self):
        assert is_reading_plausible(32767, 26000, 12000, margin=3000) is False

    def test_shorted_input_is_implausible(self):
        assert is_reading_plausible(0, 26000, 12000, margin=3000) is False
