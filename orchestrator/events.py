"""Typed events flowing into and out of the orchestrator."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

class EventKind(str, Enum):
    DEPOSIT = 'DEPOSIT'
    BURN = 'BURN'

@dataclass(frozen=True)
class SettlementEvent:
    """A ledger row that just became ready for settlement."""
    kind: EventKind
    reference_id: str

@dataclass
class Signal:
    """An outbound notification recorded by the orchestrator."""
    name: str
    reference_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'reference_id': self.reference_id,
            'details': self.details,
            'created_at': self.created_at.isoformat(),
        }

DEPOSIT_PROCESSED = 'deposit_processed'
DEPOSIT_FAILED = 'deposit_failed'
BURN_PROCESSED = 'burn_processed'
BURN_FAILED = 'burn_failed'
INSUFFICIENT_RESERVES = 'insufficient_reserves'
RESERVE_DEFICIT = 'reserve_deficit'
LOW_RESERVE_RATIO = 'low_reserve_ratio'
