"""Address, memo and amount checks for inbound and outbound transfers.

All functions are pure. ``ValidationError`` is raised by the ``validate_*``
helpers; the ``is_*`` predicates only answer yes or no.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

SOLANA_ADDRESS_PATTERN = re.compile(r'^[1-9A-HJ-NP-Za-km-z]{32,44}$')
SOLANA_ADDRESS_SEARCH = re.compile(r'[1-9A-HJ-NP-Za-km-z]{32,44}')

ZCASH_MAINNET_PREFIX = 'zs1'
ZCASH_TESTNET_PREFIX = 'ztestsapling1'
ZCASH_MIN_ADDRESS_LENGTH = 78

class ValidationError(Exception):
    """Raised when a transfer cannot be accepted as-is."""
    pass

def decode_memo(memo: Optional[str]) -> Optional[str]:
    """Decode a shielded memo into text.

    ``0x``-prefixed memos are hex-decoded as UTF-8 with trailing NUL padding
    removed. Anything else is returned as-is. Returns None if the hex is
    malformed.
    """
    if memo is None:
        return None
    if not memo.startswith('0x'):
        return memo
    try:
        return bytes.fromhex(memo[2:]).decode('utf-8').rstrip('\x00')
    except (ValueError, UnicodeDecodeError):
        return None

def encode_memo(text: str) -> str:
    """Hex-encode a note for ``z_sendmany``."""
    return text.encode('utf-8').hex()

def extract_destination_address(memo: Optional[str]) -> Optional[str]:
    """Return the first Solana address-shaped run in the memo, or None."""
    text = decode_memo(memo)
    if not text:
        return None
    match = SOLANA_ADDRESS_SEARCH.search(text)
    return match.group(0) if match else None

def is_valid_solana_address(address: Optional[str]) -> bool:
    return bool(address) and SOLANA_ADDRESS_PATTERN.match(address) is not None

def is_valid_zcash_shielded_address(address: Optional[str], testnet: bool = True) -> bool:
    """Check the Sapling prefix for the network and the minimum length."""
    if not address:
        return False
    prefix = ZCASH_TESTNET_PREFIX if testnet else ZCASH_MAINNET_PREFIX
    return address.startswith(prefix) and len(address) >= ZCASH_MIN_ADDRESS_LENGTH

def check_amount_bounds(amount, min_amount: Decimal, max_amount: Decimal) -> Decimal:
    """Return the amount as a Decimal if it lies in ``[min_amount, max_amount]``.

    Raises:
        ValidationError: If the amount is not a number or is out of bounds
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount}")
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount}")
    if value < min_amount:
        raise ValidationError(f"Amount {value} below minimum {min_amount}")
    if value > max_amount:
        raise ValidationError(f"Amount {value} above maximum {max_amount}")
    return value

def validate_deposit(memo: Optional[str], amount, min_amount: Decimal, max_amount: Decimal):
    """Validate an inbound transfer.

    Returns:
        Tuple of (destination address, amount)

    Raises:
        ValidationError: If no valid destination is found or the amount is out of bounds
    """
    destination = extract_destination_address(memo)
    if destination is None:
        raise ValidationError("No Solana address found in memo")
    if not is_valid_solana_address(destination):
        raise ValidationError(f"Invalid Solana address: {destination}")
    return destination, check_amount_bounds(amount, min_amount, max_amount)
