"""Ledger status model and amount helpers."""

from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, FrozenSet, Tuple, Union

AMOUNT_QUANTUM = Decimal('0.00000001')
BASE_UNITS_PER_COIN = 10 ** 8

class Status(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    PROCESSING = 'PROCESSING'
    SENT = 'SENT'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'

class TransactionType(str, Enum):
    DEPOSIT = 'DEPOSIT'
    MINT = 'MINT'
    BURN = 'BURN'
    WITHDRAWAL = 'WITHDRAWAL'
    PAUSE = 'PAUSE'
    RESUME = 'RESUME'
    INITIALIZE = 'INITIALIZE'

class Chain(str, Enum):
    SOURCE = 'source'
    DESTINATION = 'destination'

# Settlement legs move forward only. PROCESSING -> CONFIRMED exists solely to
# hand a row back while the bridge is paused.
_SETTLEMENT_TRANSITIONS = frozenset({
    (Status.PENDING, Status.CONFIRMED),
    (Status.CONFIRMED, Status.PROCESSING),
    (Status.PROCESSING, Status.CONFIRMED),
    (Status.PROCESSING, Status.COMPLETED),
    (Status.PROCESSING, Status.FAILED),
})

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[Tuple[Status, Status]]] = {
    'deposit': _SETTLEMENT_TRANSITIONS,
    'burn': _SETTLEMENT_TRANSITIONS,
    'withdrawal': frozenset({
        (Status.PENDING, Status.SENT),
        (Status.PENDING, Status.FAILED),
        (Status.SENT, Status.CONFIRMED),
        (Status.SENT, Status.FAILED),
        (Status.CONFIRMED, Status.COMPLETED),
    }),
}

# Deposits still move with the chain; settled rows are immutable
TRACKED_DEPOSIT_STATUSES = (Status.PENDING, Status.CONFIRMED)

# Withdrawals count against the reserve from the moment they are sent
WITHDRAWN_STATUSES = (Status.SENT, Status.CONFIRMED, Status.COMPLETED)

class InvalidTransitionError(Exception):
    """Raised when a status change is outside the allowed transition graph."""
    def __init__(self, table: str, from_status: Status, to_status: Status):
        self.table = table
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {table} status transition: {from_status.value} -> {to_status.value}"
        )

def check_transition(table: str, from_status: Union[Status, str], to_status: Union[Status, str]) -> None:
    """Raise InvalidTransitionError unless ``from_status -> to_status`` is allowed for ``table``."""
    if table not in ALLOWED_TRANSITIONS:
        raise ValueError(f"No status transitions for ledger table: {table}")
    from_status = Status(from_status)
    to_status = Status(to_status)
    if (from_status, to_status) not in ALLOWED_TRANSITIONS[table]:
        raise InvalidTransitionError(table, from_status, to_status)

def quantize_amount(amount) -> Decimal:
    """Quantize amount to 8 decimal places, rounding down."""
    return Decimal(str(amount)).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)

def to_base_units(amount) -> int:
    """Convert a coin amount to integer base units (8 decimals), rounding down."""
    return int((quantize_amount(amount) * BASE_UNITS_PER_COIN).to_integral_value(rounding=ROUND_DOWN))

def from_base_units(units: int) -> Decimal:
    """Convert integer base units back to a coin amount."""
    return quantize_amount(Decimal(int(units)) / BASE_UNITS_PER_COIN)
