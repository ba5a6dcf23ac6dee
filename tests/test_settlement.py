"""Tests for the Solana settlement client, instruction builders and burn decoding."""

import asyncio
import base64
import hashlib
import json
import struct
from decimal import Decimal

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from config import FatalConfigError
from ledger import Chain, Status
from orchestrator.events import EventKind, SettlementEvent
from settlement import MintError, SolanaSettlementClient, instructions, load_keypair
from settlement.events import BurnDecodeError, BurnEvent, BurnEventDecoder

from conftest import (
    BURN_SENDER,
    MINT_ADDRESS,
    PROGRAM_ID,
    REDEEM_ADDRESS,
    SOLANA_RECIPIENT,
    burn_logs,
    drain,
    make_settings,
)

@pytest.fixture
def client(settings, solana, ledger, keypair):
    client = SolanaSettlementClient(settings, solana, ledger, asyncio.Queue(), keypair=keypair)
    client.confirm_interval = 0
    return client

def sent_transaction(solana) -> Transaction:
    encoded = solana.sendTransaction.await_args.args[0]
    return Transaction.from_bytes(base64.b64decode(encoded))

def signature_info(signature, slot=100, err=None):
    return {"signature": signature, "slot": slot, "err": err}

# Instruction encoding

def test_anchor_discriminator():
    expected = hashlib.sha256(b"global:mint_wzec").digest()[:8]
    assert instructions.anchor_discriminator("mint_wzec") == expected

def test_mint_wzec_instruction_layout():
    program = Pubkey.from_string(PROGRAM_ID)
    mint = Pubkey.from_string(MINT_ADDRESS)
    authority = Keypair().pubkey()
    owner = Pubkey.from_string(SOLANA_RECIPIENT)
    token_account = instructions.associated_token_address(owner, mint)

    ix = instructions.mint_wzec(program, mint, token_account, authority, 99900000, "zcash-tx")

    assert ix.program_id == program
    assert ix.data == (
        instructions.anchor_discriminator("mint_wzec")
        + struct.pack("<Q", 99900000)
        + struct.pack("<I", 8) + b"zcash-tx"
    )
    accounts = [(m.pubkey, m.is_signer, m.is_writable) for m in ix.accounts]
    assert accounts == [
        (instructions.bridge_state_address(program), False, True),
        (mint, False, True),
        (token_account, False, True),
        (authority, True, True),
        (instructions.TOKEN_PROGRAM_ID, False, False),
    ]

def test_associated_token_address_derivation():
    owner = Pubkey.from_string(SOLANA_RECIPIENT)
    mint = Pubkey.from_string(MINT_ADDRESS)
    expected, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(instructions.TOKEN_PROGRAM_ID), bytes(mint)],
        instructions.ASSOCIATED_TOKEN_PROGRAM_ID
    )
    assert instructions.associated_token_address(owner, mint) == expected

def test_initialize_encodes_fee_as_u16():
    program = Pubkey.from_string(PROGRAM_ID)
    ix = instructions.initialize(program, Pubkey.from_string(MINT_ADDRESS), Keypair().pubkey(), 10)
    assert ix.data == instructions.anchor_discriminator("initialize") + b"\x0a\x00"

def test_decode_bridge_state():
    authority = Keypair().pubkey()
    mint = Pubkey.from_string(MINT_ADDRESS)
    data = instructions.BRIDGE_STATE_LAYOUT.pack(
        b"\x00" * 8, bytes(authority), bytes(mint), 10, 1, 500, 200, 3
    )

    state = instructions.decode_bridge_state(data)

    assert state == {
        "authority": str(authority),
        "mint": MINT_ADDRESS,
        "fee_basis_points": 10,
        "paused": True,
        "total_minted": 500,
        "total_burned": 200,
        "fee_collected": 3,
    }
    with pytest.raises(ValueError):
        instructions.decode_bridge_state(data[:40])

# Burn decoding

def test_decoder_reads_burn_logs():
    event = BurnEventDecoder().decode(burn_logs(units=150000000))
    assert event == BurnEvent(
        amount=Decimal("1.5"),
        sender=BURN_SENDER,
        destination_address=REDEEM_ADDRESS,
        version=1,
    )

def test_decoder_ignores_transactions_without_burn():
    assert BurnEventDecoder().decode(["Program log: Instruction: MintWzec"]) is None
    assert BurnEventDecoder().decode([]) is None
    assert BurnEventDecoder().decode(None) is None

def test_decoder_rejects_burn_without_destination():
    logs = [f"Program log: Burned 100 wZEC from {BURN_SENDER}"]
    with pytest.raises(BurnDecodeError, match="destination"):
        BurnEventDecoder().decode(logs)

def test_decoder_rejects_malformed_burn_line():
    with pytest.raises(BurnDecodeError):
        BurnEventDecoder().decode(["Program log: Burned lots of wZEC"])

def test_decoder_prefers_newest_version():
    def v2(logs):
        return BurnEvent(Decimal("2"), "sender", "dest", 2)

    decoder = BurnEventDecoder({1: lambda logs: None, 2: v2})
    assert decoder.decode(["anything"]).version == 2

# Minting

@pytest.mark.asyncio
async def test_mint_through_bridge_program(client, solana, keypair):
    signature = await client.mint(SOLANA_RECIPIENT, Decimal("0.999"), "zcash-tx")

    assert signature == "mint-signature-1"
    options = solana.sendTransaction.await_args.args[1]
    assert options["encoding"] == "base64"

    tx = sent_transaction(solana)
    assert tx.message.account_keys[0] == keypair.pubkey()
    create_ata, mint_ix = tx.message.instructions
    assert bytes(create_ata.data) == b"\x01"
    assert bytes(mint_ix.data) == (
        instructions.anchor_discriminator("mint_wzec")
        + struct.pack("<Q", 99900000)
        + struct.pack("<I", 8) + b"zcash-tx"
    )
    solana.getSignatureStatuses.assert_awaited_with(["mint-signature-1"])

@pytest.mark.asyncio
async def test_mint_without_program_uses_spl_mint_to(solana, ledger, keypair):
    client = SolanaSettlementClient(
        make_settings(solana_program_id=None), solana, ledger, asyncio.Queue(), keypair=keypair
    )
    client.confirm_interval = 0

    await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")

    mint_ix = sent_transaction(solana).message.instructions[1]
    assert bytes(mint_ix.data) == b"\x07" + struct.pack("<Q", 100000000)

@pytest.mark.asyncio
async def test_mint_waits_for_confirmation(client, solana):
    solana.getSignatureStatuses.side_effect = [
        {"value": [None]},
        {"value": [{"confirmationStatus": "processed", "err": None}]},
        {"value": [{"confirmationStatus": "confirmed", "err": None}]},
    ]

    assert await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx") == "mint-signature-1"
    assert solana.getSignatureStatuses.await_count == 3

@pytest.mark.asyncio
async def test_failed_transaction_raises_mint_error(client, solana):
    solana.getSignatureStatuses.return_value = {
        "value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [1, "Custom"]}}]
    }
    with pytest.raises(MintError, match="failed"):
        await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")

@pytest.mark.asyncio
async def test_unconfirmed_transaction_raises_mint_error(client, solana):
    client.confirm_attempts = 2
    solana.getSignatureStatuses.return_value = {"value": [None]}
    with pytest.raises(MintError, match="not confirmed"):
        await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")

@pytest.mark.asyncio
async def test_malformed_node_reply_raises_mint_error(client, solana):
    solana.getLatestBlockhash.return_value = {"value": {}}
    with pytest.raises(MintError, match="Could not build transaction"):
        await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")

    solana.getLatestBlockhash.return_value = {"value": {"blockhash": None}}
    with pytest.raises(MintError, match="Could not build transaction"):
        await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")
    solana.sendTransaction.assert_not_awaited()

@pytest.mark.asyncio
async def test_mint_rejects_bad_recipient_and_dust(client, solana):
    with pytest.raises(MintError, match="Invalid recipient"):
        await client.mint("not-a-key", Decimal("1"), "zcash-tx")
    with pytest.raises(MintError, match="too small"):
        await client.mint(SOLANA_RECIPIENT, Decimal("0.000000001"), "zcash-tx")
    solana.sendTransaction.assert_not_awaited()

@pytest.mark.asyncio
async def test_mint_requires_configured_mint(solana, ledger, keypair):
    client = SolanaSettlementClient(
        make_settings(solana_mint_address=""), solana, ledger, asyncio.Queue(), keypair=keypair
    )
    with pytest.raises(FatalConfigError):
        await client.mint(SOLANA_RECIPIENT, Decimal("1"), "zcash-tx")

# Burn polling

@pytest.mark.asyncio
async def test_poll_burns_records_and_queues(client, solana, ledger):
    solana.getSignaturesForAddress.return_value = [signature_info("burn-sig", slot=321)]
    solana.getTransaction.return_value = {"meta": {"logMessages": burn_logs(units=250000000)}}

    assert await client.poll_burns() == 1

    burn = await ledger.get_burn("burn-sig")
    assert burn["status"] == Status.CONFIRMED.value
    assert burn["amount"] == Decimal("2.5")
    assert burn["sender"] == BURN_SENDER
    assert burn["destination_address"] == REDEEM_ADDRESS
    assert await drain(client.queue) == [SettlementEvent(EventKind.BURN, "burn-sig")]
    assert [e["transaction_type"] for e in ledger.audit_log] == ["BURN"]
    assert (await ledger.get_bridge_state())["last_destination_slot"] == 321

    # Seen again on the next poll: nothing new
    assert await client.poll_burns() == 0
    assert solana.getTransaction.await_count == 1
    assert client.queue.empty()

@pytest.mark.asyncio
async def test_poll_burns_skips_failed_and_non_burn_transactions(client, solana, ledger):
    solana.getSignaturesForAddress.return_value = [
        signature_info("failed-sig", err={"InstructionError": [0, "Custom"]}),
        signature_info("mint-sig"),
    ]
    solana.getTransaction.return_value = {"meta": {"logMessages": ["Program log: Instruction: MintWzec"]}}

    assert await client.poll_burns() == 0
    assert await client.poll_burns() == 0

    solana.getTransaction.assert_awaited_once()
    assert ledger.tables["burn"] == {}

@pytest.mark.asyncio
async def test_poll_burns_rejects_invalid_destination(client, solana, ledger):
    solana.getSignaturesForAddress.return_value = [signature_info("burn-sig")]
    solana.getTransaction.return_value = {
        "meta": {"logMessages": burn_logs(destination="t1NotShielded")}
    }

    assert await client.poll_burns() == 0

    assert await ledger.get_burn("burn-sig") is None
    assert await ledger.is_rejected(Chain.DESTINATION, "burn-sig")
    assert client.queue.empty()

@pytest.mark.asyncio
async def test_poll_burns_without_program_does_nothing(solana, ledger, keypair):
    client = SolanaSettlementClient(
        make_settings(solana_program_id=None), solana, ledger, asyncio.Queue(), keypair=keypair
    )
    assert await client.poll_burns() == 0
    solana.getSignaturesForAddress.assert_not_awaited()

# Reads

@pytest.mark.asyncio
async def test_get_token_balance(client, solana):
    solana.getTokenAccountsByOwner.return_value = {"value": [
        {"account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": "150000000", "decimals": 8}}}}}},
        {"account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": "50000000", "decimals": 8}}}}}},
    ]}
    assert await client.get_token_balance(SOLANA_RECIPIENT) == Decimal("2")

    solana.getTokenAccountsByOwner.return_value = {"value": []}
    assert await client.get_token_balance(SOLANA_RECIPIENT) == Decimal("0")

@pytest.mark.asyncio
async def test_get_bridge_state(client, solana, keypair):
    data = instructions.BRIDGE_STATE_LAYOUT.pack(
        b"\x00" * 8, bytes(keypair.pubkey()), bytes(Pubkey.from_string(MINT_ADDRESS)), 10, 0, 1, 2, 3
    )
    solana.getAccountInfo.return_value = {
        "value": {"data": [base64.b64encode(data).decode(), "base64"]}
    }

    state = await client.get_bridge_state()

    assert state["authority"] == str(keypair.pubkey())
    assert state["paused"] is False
    assert state["address"] == str(instructions.bridge_state_address(Pubkey.from_string(PROGRAM_ID)))

    solana.getAccountInfo.return_value = {"value": None}
    assert await client.get_bridge_state() is None

@pytest.mark.asyncio
async def test_pause_bridge_submits_admin_instruction(client, solana):
    await client.pause_bridge()
    ix = sent_transaction(solana).message.instructions[0]
    assert bytes(ix.data) == instructions.anchor_discriminator("pause_bridge")

# Keypair loading

def test_load_keypair(tmp_path):
    keypair = Keypair()
    path = tmp_path / "authority.json"
    path.write_text(json.dumps(list(bytes(keypair))))

    assert load_keypair(str(path)).pubkey() == keypair.pubkey()

def test_load_keypair_errors(tmp_path):
    with pytest.raises(FatalConfigError, match="not found"):
        load_keypair(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2, 3]")
    with pytest.raises(FatalConfigError, match="Invalid"):
        load_keypair(str(bad))
