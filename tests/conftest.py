"""Shared fixtures for the bridge tests."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from solders.keypair import Keypair

from config import BridgeSettings
from context import assemble
from ledger import MemoryLedgerStore

# Test data
DEPOSIT_ADDRESS = "ztestsapling1" + "q" * 70
REDEEM_ADDRESS = "ztestsapling1" + "r" * 70
SOLANA_RECIPIENT = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
BURN_SENDER = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
MINT_ADDRESS = "So11111111111111111111111111111111111111112"
PROGRAM_ID = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
BLOCKHASH = "11111111111111111111111111111111"

def make_settings(**overrides) -> BridgeSettings:
    values = dict(
        deposit_address=DEPOSIT_ADDRESS,
        zcash_rpc_url="http://127.0.0.1:18232",
        zcash_rpc_user="user",
        zcash_rpc_password="password",
        solana_rpc_url="http://127.0.0.1:8899",
        solana_mint_address=MINT_ADDRESS,
        solana_authority_keypair="unused.json",
        solana_program_id=PROGRAM_ID,
        confirmations=6,
        fee_percentage=Decimal("0.1"),
        payment_poll_interval=Decimal("0"),
        payment_poll_attempts=3,
    )
    values.update(overrides)
    return BridgeSettings(**values)

def transfer(txid, amount="1.0", memo=SOLANA_RECIPIENT, confirmations=0):
    """A z_listreceivedbyaddress entry."""
    return {
        "txid": txid,
        "amount": float(amount),
        "memo": memo,
        "confirmations": confirmations,
        "change": False,
    }

def burn_logs(units=100000000, sender=BURN_SENDER, destination=REDEEM_ADDRESS):
    return [
        f"Program {PROGRAM_ID} invoke [1]",
        "Program log: Instruction: BurnWzec",
        f"Program log: Burned {units} wZEC from {sender}",
        f"Program log: ZEC destination: {destination}",
        f"Program {PROGRAM_ID} success",
    ]

@pytest.fixture
def settings():
    return make_settings()

@pytest.fixture
def ledger():
    return MemoryLedgerStore()

@pytest.fixture
def zcash():
    """zcashd RPC collaborator."""
    rpc = AsyncMock()
    rpc.z_listreceivedbyaddress.return_value = []
    rpc.getblockcount.return_value = 1000
    rpc.z_sendmany.return_value = "opid-1"
    rpc.z_getoperationresult.return_value = [
        {"id": "opid-1", "status": "success", "result": {"txid": "zec-payout-1"}}
    ]
    rpc.gettransaction.return_value = {"confirmations": 0}
    return rpc

@pytest.fixture
def solana():
    """Solana RPC collaborator."""
    rpc = AsyncMock()
    rpc.getLatestBlockhash.return_value = {"value": {"blockhash": BLOCKHASH}}
    rpc.sendTransaction.return_value = "mint-signature-1"
    rpc.getSignatureStatuses.return_value = {
        "value": [{"confirmationStatus": "confirmed", "err": None}]
    }
    rpc.getSignaturesForAddress.return_value = []
    return rpc

@pytest.fixture
def keypair():
    return Keypair()

@pytest_asyncio.fixture
async def bridge(settings, ledger, zcash, solana, keypair):
    """Fully wired bridge on the in-memory ledger with mocked chains."""
    context = assemble(settings, ledger, zcash, solana, keypair=keypair)
    context.settlement.confirm_interval = 0
    yield context
    context.stop_event.set()

async def drain(queue: asyncio.Queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events
