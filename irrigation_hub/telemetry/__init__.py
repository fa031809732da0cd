"""Telemetry protocol and ingestion package."""
from irrigation_hub.telemetry.parser import Telemetry, parse_telemetry, decode_telemetry
from irrigation_hub.telemetry.ingestion import TelemetryIngestion

__all__ = [
    'Telemetry',
    'parse_telemetry',
    'decode_telemetry',
    'TelemetryIngestion',
]
