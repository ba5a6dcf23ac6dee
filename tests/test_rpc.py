"""Tests for the JSON-RPC clients."""

from unittest.mock import MagicMock

import pytest
import requests

from rpc import (
    NodeAuthError,
    NodeConnectionError,
    SolanaError,
    SolanaRPC,
    TransientRPCError,
    ZcashError,
    ZcashRPC,
)

def response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return resp

@pytest.fixture(autouse=True)
def no_backoff_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)

@pytest.fixture
def zcash():
    client = ZcashRPC("http://127.0.0.1:18232", "user", "password")
    client.session = MagicMock()
    return client

@pytest.fixture
def solana():
    client = SolanaRPC("http://127.0.0.1:8899")
    client.session = MagicMock()
    return client

def test_zcash_uses_basic_auth_and_jsonrpc_1():
    client = ZcashRPC("http://127.0.0.1:18232", "user", "password")
    assert client.session.auth == ("user", "password")
    assert client.jsonrpc_version == "1.0"
    assert SolanaRPC("http://127.0.0.1:8899").session.auth is None

@pytest.mark.asyncio
async def test_call_returns_result(zcash):
    zcash.session.post.return_value = response(body={"result": 1234, "error": None, "id": 1})

    assert await zcash.getblockcount() == 1234

    url = zcash.session.post.call_args.args[0]
    payload = zcash.session.post.call_args.kwargs["json"]
    assert url == "http://127.0.0.1:18232"
    assert payload["method"] == "getblockcount"
    assert payload["params"] == []
    assert payload["jsonrpc"] == "1.0"

@pytest.mark.asyncio
async def test_request_ids_increase(solana):
    solana.session.post.return_value = response(body={"result": 5, "id": 1})

    await solana.getSlot()
    await solana.getSlot({"commitment": "confirmed"})

    ids = [c.kwargs["json"]["id"] for c in solana.session.post.call_args_list]
    assert ids == [1, 2]
    assert solana.session.post.call_args.kwargs["json"]["params"] == [{"commitment": "confirmed"}]

@pytest.mark.asyncio
async def test_node_error_maps_to_chain_error(zcash):
    zcash.session.post.return_value = response(
        500, {"result": None, "error": {"code": -6, "message": "Insufficient funds"}}
    )

    with pytest.raises(ZcashError) as exc:
        await zcash.z_sendmany("from", [], 1, 0.0001)

    assert exc.value.code == -6
    assert exc.value.method == "z_sendmany"
    assert not isinstance(exc.value, TransientRPCError)

@pytest.mark.asyncio
async def test_solana_error_class(solana):
    solana.session.post.return_value = response(
        body={"jsonrpc": "2.0", "error": {"code": -32002, "message": "Transaction simulation failed"}}
    )

    with pytest.raises(SolanaError) as exc:
        await solana.sendTransaction("AAAA", {"encoding": "base64"})
    assert exc.value.code == -32002

@pytest.mark.asyncio
async def test_unauthorized(zcash):
    zcash.session.post.return_value = response(401)

    with pytest.raises(NodeAuthError):
        await zcash.getblockcount()
    zcash.session.post.assert_called_once()

@pytest.mark.asyncio
async def test_connection_failure_is_transient_and_retried(zcash):
    zcash.session.post.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(NodeConnectionError) as exc:
        await zcash.getblockcount()

    assert isinstance(exc.value, TransientRPCError)
    assert zcash.session.post.call_count == 3

@pytest.mark.asyncio
async def test_submissions_are_not_retried(zcash):
    zcash.session.post.side_effect = requests.exceptions.Timeout()

    with pytest.raises(NodeConnectionError, match="timed out"):
        await zcash.z_sendmany("from", [], 1, 0.0001)

    zcash.session.post.assert_called_once()

@pytest.mark.asyncio
async def test_invalid_response_body(solana):
    solana.session.post.return_value = response(body={"id": 1})

    with pytest.raises(NodeConnectionError, match="Invalid response"):
        await solana.getSlot()
