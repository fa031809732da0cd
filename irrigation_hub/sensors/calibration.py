"""Capacitive soil moisture calibration (raw ADC counts -> moisture fraction)."""
from irrigation_hub.config.config import SENSOR_FAILURE_MARGIN


def moisture(raw: int, raw_dry: int, raw_wet: int) -> float:
    """
    Convert a raw sensor sample to a 0.0-1.0 moisture fraction.

    Linear interpolation between the sensor's dry and wet calibration points,
    clamped to [0.0, 1.0]. Drier soil reads higher, so raw_dry is normally
    larger than raw_wet.

    Args:
        raw: Raw ADC sample
        raw_dry: Sample recorded in completely dry soil (0.0)
        raw_wet: Sample recorded in saturated soil (1.0)

    Returns:
        Moisture fraction; 0.0 for a degenerate calibration (raw_dry == raw_wet)
    """
    span = raw_dry - raw_wet
    if span == 0:
        return 0.0
    fraction = (raw_dry - raw) / span
    return max(0.0, min(1.0, fraction))


def is_reading_plausible(raw: int, raw_dry: int, raw_wet: int,
                         margin: int = SENSOR_FAILURE_MARGIN) -> bool:
    """
    Check that a raw sample lies near the calibration range.

    A disconnected ADS1115 input floats near full scale and a shorted one
    near zero; both land far outside the dry/wet endpoints.
    """
    low, high = (raw_wet, raw_dry) if raw_wet < raw_dry else (raw_dry, raw_wet)
    return low - margin <= raw <= high + margin
