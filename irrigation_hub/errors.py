"""Exception types raised by the hub core."""


class HubError(Exception):
    """Base class for irrigation hub errors."""


class ConfigError(HubError):
    """Zone/sensor configuration is missing or inconsistent."""


class ActuatorError(HubError):
    """A valve could not be driven to the requested state."""

    def __init__(self, message: str, channels=None):
        super().__init__(message)
        self.channels = list(channels or [])


class TelemetryDecodeError(HubError):
    """An inbound telemetry message could not be decoded."""


class CommandRefused(HubError):
    """An operator command was rejected (limits, mode, alarm or busy zone)."""
