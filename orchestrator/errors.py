"""Settlement failures and invariant violations raised around the orchestrator."""
from decimal import Decimal

class SettlementError(Exception):
    """Base class for a failed cross-chain settlement call."""
    pass

class InsufficientReserveError(SettlementError):
    """Raised when a burn asks for more than the bridge holds."""
    def __init__(self, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient reserves: available {available}, requested {requested}"
        )

class InvariantViolation(Exception):
    """The reserve no longer backs the outstanding wrapped supply with margin."""
    def __init__(self, kind: str, reserve: Decimal, outstanding: Decimal):
        self.kind = kind
        self.reserve = reserve
        self.outstanding = outstanding
        super().__init__(f"{kind}: reserve {reserve}, outstanding {outstanding}")
