"""Tests for the bridge REST API."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api import create_app
from context import assemble
from ledger import Chain, MemoryLedgerStore, Status
from rpc import NodeConnectionError, SolanaError
from settlement import TransactionError

from conftest import REDEEM_ADDRESS, SOLANA_RECIPIENT

def amount(value):
    return Decimal(str(value))

@pytest.fixture
def context(settings, zcash, solana, keypair):
    context = assemble(settings, MemoryLedgerStore(), zcash, solana, keypair=keypair)
    context.settlement.confirm_interval = 0
    return context

@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as client:
        yield client

def settle_deposit(context, txid, value="1.0"):
    async def run():
        ledger = context.ledger
        await ledger.insert_deposit(txid, Decimal(value), SOLANA_RECIPIENT, confirmations=6)
        await ledger.transition_deposit(txid, Status.PENDING, Status.CONFIRMED)
        await context.orchestrator.handle_confirmed_deposit(await ledger.get_deposit(txid))
    asyncio.run(run())

def test_deposit_address(client, settings):
    response = client.get("/bridge/deposit-address")

    assert response.status_code == 200
    data = response.json()
    assert data["deposit_address"] == settings.deposit_address
    assert data["network"] == "testnet"
    assert data["confirmations"] == 6
    assert amount(data["fee_percentage"]) == Decimal("0.1")

def test_reserves_after_deposit(context, client):
    settle_deposit(context, "tx1")

    data = client.get("/bridge/reserves").json()

    assert amount(data["total_locked"]) == Decimal("1")
    assert amount(data["total_minted"]) == Decimal("0.999")
    assert amount(data["total_fees_collected"]) == Decimal("0.001")
    assert amount(data["reserve_ratio"]) == Decimal("1.001001")

def test_status(context, client):
    settle_deposit(context, "tx1")

    data = client.get("/bridge/status").json()

    assert data["paused"] is False
    assert data["deposits"]["completed"] == 1
    assert data["stuck_processing"] == 0
    assert [s["name"] for s in data["recent_signals"]] == ["low_reserve_ratio", "deposit_processed"]

def test_transaction_lookup(context, client):
    settle_deposit(context, "tx1")

    by_deposit = client.get("/bridge/transactions/tx1")
    by_mint = client.get("/bridge/transactions/mint-signature-1")

    assert by_deposit.status_code == 200
    assert by_deposit.json()["mint"]["reference_id"] == "mint-signature-1"
    assert by_mint.json()["deposit"]["reference_id"] == "tx1"
    assert client.get("/bridge/transactions/unknown").status_code == 404

def test_history(context, client):
    settle_deposit(context, "tx1")
    asyncio.run(context.ledger.insert_burn("burn-sig", Decimal("0.5"), SOLANA_RECIPIENT, REDEEM_ADDRESS))

    data = client.get("/bridge/history", params={"limit": 10}).json()

    assert [(h["transaction_type"], h["reference_id"]) for h in data] == [
        ("BURN", "burn-sig"),
        ("DEPOSIT", "tx1"),
    ]
    assert data[1]["status"] == "COMPLETED"
    assert client.get("/bridge/history", params={"limit": 0}).status_code == 422

def test_rejected(context, client):
    asyncio.run(context.ledger.record_rejected(
        Chain.SOURCE, "bad-memo", "No Solana address found in memo", amount=Decimal("2"), payload="hello"
    ))

    data = client.get("/bridge/rejected").json()

    assert len(data) == 1
    assert data[0]["chain"] == "source"
    assert data[0]["reference_id"] == "bad-memo"
    assert data[0]["payload"] == "hello"
    assert data[0]["resolved"] is False
    assert amount(data[0]["amount"]) == Decimal("2")
    assert client.get("/bridge/rejected", params={"resolved": True}).json() == []

def test_balance(context, client, solana):
    solana.getTokenAccountsByOwner.return_value = {"value": [
        {"account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": "99900000", "decimals": 8}}}}}},
    ]}

    data = client.get(f"/bridge/balance/{SOLANA_RECIPIENT}").json()
    assert data["address"] == SOLANA_RECIPIENT
    assert amount(data["balance"]) == Decimal("0.999")

    assert client.get("/bridge/balance/not-an-address").status_code == 400

def test_balance_when_cluster_is_down(client, solana):
    solana.getTokenAccountsByOwner.side_effect = NodeConnectionError("down")
    assert client.get(f"/bridge/balance/{SOLANA_RECIPIENT}").status_code == 503

    solana.getTokenAccountsByOwner.side_effect = SolanaError("Invalid params", -32602, "getTokenAccountsByOwner")
    assert client.get(f"/bridge/balance/{SOLANA_RECIPIENT}").status_code == 502

def test_pause_and_resume(context, client):
    paused = client.post("/bridge/pause")
    assert paused.status_code == 200
    assert paused.json()["paused"] is True
    assert asyncio.run(context.ledger.get_bridge_state())["paused"] is True

    resumed = client.post("/bridge/resume")
    assert resumed.status_code == 200
    assert resumed.json()["paused"] is False

def test_initialize(context, client):
    context.settlement.initialize_bridge = AsyncMock(return_value="init-sig")

    response = client.post("/bridge/initialize", json={"fee_basis_points": 25})

    assert response.status_code == 200
    assert response.json() == {"signature": "init-sig"}
    context.settlement.initialize_bridge.assert_awaited_once_with(25)

def test_initialize_defaults_and_validation(context, client):
    context.settlement.initialize_bridge = AsyncMock(return_value="init-sig")

    assert client.post("/bridge/initialize").status_code == 200
    context.settlement.initialize_bridge.assert_awaited_once_with(10)

    assert client.post("/bridge/initialize", json={"fee_basis_points": 20000}).status_code == 422

def test_initialize_failure(context, client):
    context.settlement.initialize_bridge = AsyncMock(side_effect=TransactionError("already initialized"))
    response = client.post("/bridge/initialize", json={})
    assert response.status_code == 502
    assert "already initialized" in response.json()["detail"]

def test_unavailable_without_bridge():
    app = create_app()
    app.state.bridge = None
    # No lifespan: the bridge was never started
    client = TestClient(app)
    assert client.get("/bridge/status").status_code == 503
