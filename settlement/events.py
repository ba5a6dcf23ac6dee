"""Decoding of burn events from bridge program logs.

Burns are announced by the program through log lines. Each supported log
format is a decoder version; the newest version that recognises the burn
marker wins.
"""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from ledger import from_base_units
from listener.validation import ValidationError

@dataclass(frozen=True)
class BurnEvent:
    amount: Decimal
    sender: str
    destination_address: str
    version: int

class BurnDecodeError(ValidationError):
    """A burn marker was found but its details could not be read."""
    pass

BURN_V1 = re.compile(r'Burned (\d+) wZEC from ([1-9A-HJ-NP-Za-km-z]{32,44})')
DESTINATION_V1 = re.compile(r'ZEC destination: (\S+)')

def _decode_v1(logs: Sequence[str]) -> Optional[BurnEvent]:
    burn = None
    destination = None
    for line in logs:
        if burn is None:
            burn = BURN_V1.search(line)
        if destination is None:
            destination = DESTINATION_V1.search(line)

    if burn is None:
        if any('Burned' in line and 'wZEC' in line for line in logs):
            raise BurnDecodeError("Malformed burn log line")
        return None
    if destination is None:
        raise BurnDecodeError("Burn without a ZEC destination")

    units = int(burn.group(1))
    if units <= 0:
        raise BurnDecodeError(f"Invalid burn amount: {units}")

    return BurnEvent(
        amount=from_base_units(units),
        sender=burn.group(2),
        destination_address=destination.group(1),
        version=1
    )

class BurnEventDecoder:
    """Turns transaction log lines into a typed BurnEvent."""

    def __init__(self, decoders: Optional[Dict[int, Callable[[Sequence[str]], Optional[BurnEvent]]]] = None):
        self.decoders = decoders or {1: _decode_v1}

    @property
    def versions(self) -> List[int]:
        return sorted(self.decoders, reverse=True)

    def decode(self, logs: Optional[Sequence[str]]) -> Optional[BurnEvent]:
        """Decode a burn from transaction logs.

        Returns:
            The burn, or None if the logs carry no burn marker

        Raises:
            BurnDecodeError: If a marker is present but the burn cannot be decoded
        """
        if not logs:
            return None
        error = None
        for version in self.versions:
            try:
                event = self.decoders[version](logs)
            except BurnDecodeError as e:
                error = error or e
                continue
            if event is not None:
                return event
        if error:
            raise error
        return None
