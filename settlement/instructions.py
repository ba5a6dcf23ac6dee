"""Instruction builders for the bridge program and the SPL token programs."""
import hashlib
import struct
from typing import Any, Dict

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

TOKEN_PROGRAM_ID = Pubkey.from_string('TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA')
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string('ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL')
SYSTEM_PROGRAM_ID = Pubkey.from_string('11111111111111111111111111111111')

BRIDGE_STATE_SEED = b'bridge_state'

# SPL token instruction tags
SPL_MINT_TO = 7
# Associated token account instruction tags
ATA_CREATE_IDEMPOTENT = 1

# discriminator, authority, mint, fee_bps, paused, total_minted, total_burned, fee_collected
BRIDGE_STATE_LAYOUT = struct.Struct('<8s32s32sHB3Q')

def anchor_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), the Anchor instruction tag."""
    return hashlib.sha256(f'global:{name}'.encode('utf-8')).digest()[:8]

def encode_u16(value: int) -> bytes:
    return struct.pack('<H', value)

def encode_u64(value: int) -> bytes:
    return struct.pack('<Q', value)

def encode_string(value: str) -> bytes:
    data = value.encode('utf-8')
    return struct.pack('<I', len(data)) + data

def bridge_state_address(program_id: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address([BRIDGE_STATE_SEED], program_id)
    return address

def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address

def create_associated_token_account_idempotent(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Create the owner's token account for ``mint`` unless it already exists."""
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([ATA_CREATE_IDEMPOTENT]),
        [
            AccountMeta(payer, True, True),
            AccountMeta(associated_token_address(owner, mint), False, True),
            AccountMeta(owner, False, False),
            AccountMeta(mint, False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
            AccountMeta(TOKEN_PROGRAM_ID, False, False),
        ]
    )

def spl_mint_to(mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    return Instruction(
        TOKEN_PROGRAM_ID,
        bytes([SPL_MINT_TO]) + encode_u64(amount),
        [
            AccountMeta(mint, False, True),
            AccountMeta(destination, False, True),
            AccountMeta(authority, True, False),
        ]
    )

def mint_wzec(
    program_id: Pubkey,
    mint: Pubkey,
    recipient_token_account: Pubkey,
    authority: Pubkey,
    amount: int,
    zcash_txid: str
) -> Instruction:
    """Bridge program ``mint_wzec(amount: u64, zcash_txid: string)``."""
    return Instruction(
        program_id,
        anchor_discriminator('mint_wzec') + encode_u64(amount) + encode_string(zcash_txid),
        [
            AccountMeta(bridge_state_address(program_id), False, True),
            AccountMeta(mint, False, True),
            AccountMeta(recipient_token_account, False, True),
            AccountMeta(authority, True, True),
            AccountMeta(TOKEN_PROGRAM_ID, False, False),
        ]
    )

def initialize(program_id: Pubkey, mint: Pubkey, authority: Pubkey, fee_bps: int) -> Instruction:
    """Bridge program ``initialize(fee_bps: u16)``."""
    return Instruction(
        program_id,
        anchor_discriminator('initialize') + encode_u16(fee_bps),
        [
            AccountMeta(bridge_state_address(program_id), False, True),
            AccountMeta(mint, False, True),
            AccountMeta(authority, True, True),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ]
    )

def _admin(name: str, program_id: Pubkey, authority: Pubkey) -> Instruction:
    return Instruction(
        program_id,
        anchor_discriminator(name),
        [
            AccountMeta(bridge_state_address(program_id), False, True),
            AccountMeta(authority, True, False),
        ]
    )

def pause_bridge(program_id: Pubkey, authority: Pubkey) -> Instruction:
    return _admin('pause_bridge', program_id, authority)

def resume_bridge(program_id: Pubkey, authority: Pubkey) -> Instruction:
    return _admin('resume_bridge', program_id, authority)

def decode_bridge_state(data: bytes) -> Dict[str, Any]:
    """Decode the on-chain bridge state account.

    Raises:
        ValueError: If the account data is too short
    """
    if len(data) < BRIDGE_STATE_LAYOUT.size:
        raise ValueError(
            f"Bridge state account is {len(data)} bytes, expected at least {BRIDGE_STATE_LAYOUT.size}"
        )
    (
        _discriminator,
        authority,
        mint,
        fee_bps,
        paused,
        total_minted,
        total_burned,
        fee_collected,
    ) = BRIDGE_STATE_LAYOUT.unpack_from(data)
    return {
        'authority': str(Pubkey(authority)),
        'mint': str(Pubkey(mint)),
        'fee_basis_points': fee_bps,
        'paused': bool(paused),
        'total_minted': total_minted,
        'total_burned': total_burned,
        'fee_collected': fee_collected,
    }
