"""Sensor calibration package."""
from irrigation_hub.sensors.calibration import moisture, is_reading_plausible

__all__ = [
    'moisture',
    'is_reading_plausible',
]
