"""Mock GPIO implementation for development/testing."""
from typing import Dict, Set
from irrigation_hub.hardware.gpio_interface import GPIOInterface


class MockGPIO(GPIOInterface):
    """Mock GPIO that keeps pin levels in memory."""

    def __init__(self):
        """Initialize mock GPIO."""
        self.pins: Dict[int, Dict] = {}  # pin -> {mode, pull_up_down}
        self.pin_states: Dict[int, bool] = {}  # pin -> level
        self.failing_pins: Set[int] = set()  # writes to these raise OSError

    def setup_pin(self, pin: int, mode: str, pull_up_down: str = None, initial: bool = None):
        """Setup a GPIO pin."""
        if mode not in ('input', 'output'):
            raise ValueError(f"Invalid mode: {mode}")
        self.pins[pin] = {'mode': mode, 'pull_up_down': pull_up_down}
        if initial is not None:
            self.pin_states[pin] = initial
        else:
            self.pin_states.setdefault(pin, pull_up_down == 'up')

    def read_pin(self, pin: int) -> bool:
        """Read digital value from GPIO pin."""
        if pin not in self.pins:
            raise ValueError(f"Pin {pin} not set up")
        return self.pin_states.get(pin, False)

    def write_pin(self, pin: int, value: bool):
        """Write digital value to GPIO pin."""
        if pin not in self.pins:
            raise ValueError(f"Pin {pin} not set up")
        if self.pins[pin]['mode'] != 'output':
            raise ValueError(f"Pin {pin} is not configured as output")
        if pin in self.failing_pins:
            raise OSError(f"Simulated write failure on pin {pin}")
        self.pin_states[pin] = value

    def cleanup(self):
        """Cleanup GPIO resources."""
        self.pins.clear()
        self.pin_states.clear()
