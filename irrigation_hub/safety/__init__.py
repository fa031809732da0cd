"""Safety package: daily limits and fail-safe escalation."""
from irrigation_hub.safety.ledger import SafetyLedger
from irrigation_hub.safety.fail_safe import FailSafe

__all__ = [
    'SafetyLedger',
    'FailSafe',
]
