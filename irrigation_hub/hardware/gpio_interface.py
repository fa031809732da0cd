"""Abstract GPIO interface for hardware abstraction."""
from abc import ABC, abstractmethod


class GPIOInterface(ABC):
    """Abstract base class for digital GPIO operations used by relay boards."""

    @abstractmethod
    def setup_pin(self, pin: int, mode: str, pull_up_down: str = None, initial: bool = None):
        """
        Setup a GPIO pin.

        Args:
            pin: GPIO pin number (BCM)
            mode: 'input' or 'output'
            pull_up_down: 'up', 'down', or None
            initial: Level driven as soon as an output pin is configured
        """
        pass

    @abstractmethod
    def read_pin(self, pin: int) -> bool:
        """Read digital value from GPIO pin (True for HIGH)."""
        pass

    @abstractmethod
    def write_pin(self, pin: int, value: bool):
        """
        Write digital value to GPIO pin.

        Args:
            pin: GPIO pin number
            value: True for HIGH, False for LOW
        """
        pass

    @abstractmethod
    def cleanup(self):
        """Cleanup GPIO resources."""
        pass
