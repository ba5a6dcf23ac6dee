"""Tests for settings.conf and zcash.conf loading."""

from decimal import Decimal

import pytest

from config import FatalConfigError, SettingsError, ZcashConfigError, load_config
from config.lib.load_settings_conf import ENV_OVERRIDES, load_settings_conf
from config.lib.load_zcash_conf import load_zcash_conf

DEPOSIT = "ztestsapling1" + "q" * 70
MINT = "So11111111111111111111111111111111111111112"

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(ENV_OVERRIDES) + ["ZCASH_RPC_URL", "ZCASH_RPC_USER", "ZCASH_RPC_PASSWORD"]:
        monkeypatch.delenv(name, raising=False)

@pytest.fixture
def conf_dir(tmp_path):
    """A settings directory with a keypair file and a zcash.conf."""
    keypair = tmp_path / "authority.json"
    keypair.write_text("[]")
    zcash_root = tmp_path / "zcash"
    zcash_root.mkdir()
    (zcash_root / "zcash.conf").write_text(
        "# node\ntestnet=1\nserver=1\nrpcuser=alice\nrpcpassword=secret\nrpcport=18232\n"
    )
    write_settings(tmp_path, {
        "zcash_root": str(zcash_root),
        "deposit_address": DEPOSIT,
        "solana_mint_address": MINT,
        "solana_authority_keypair": str(keypair),
    })
    return tmp_path

def write_settings(directory, values):
    lines = ["[DEFAULT]"] + [f"{key} = {value}" for key, value in values.items()]
    (directory / "settings.conf").write_text("\n".join(lines) + "\n")

def test_load_config(conf_dir):
    settings = load_config(str(conf_dir))

    assert settings.deposit_address == DEPOSIT
    assert settings.zcash_rpc_url == "http://127.0.0.1:18232"
    assert settings.zcash_rpc_user == "alice"
    assert settings.zcash_rpc_password == "secret"
    assert settings.solana_program_id is None
    assert settings.confirmations == 6
    assert settings.fee_percentage == Decimal("0.1")
    assert settings.fee_basis_points == 10
    assert settings.is_testnet
    assert settings.auto_pause_on_deficit is False
    assert "zcash_rpc_password" not in settings.describe()

def test_environment_overrides_file(conf_dir, monkeypatch):
    monkeypatch.setenv("BRIDGE_FEE_PERCENTAGE", "0.25")
    monkeypatch.setenv("SOLANA_PROGRAM_ID", "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS")
    monkeypatch.setenv("ZCASH_RPC_URL", "http://zcashd:18232")

    settings = load_config(str(conf_dir))

    assert settings.fee_percentage == Decimal("0.25")
    assert settings.fee_basis_points == 25
    assert settings.solana_program_id == "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
    assert settings.zcash_rpc_url == "http://zcashd:18232"

def test_missing_required_settings(tmp_path):
    with pytest.raises(SettingsError) as exc:
        load_settings_conf(str(tmp_path))

    message = str(exc.value)
    assert "deposit_address" in message
    assert "solana_mint_address" in message
    assert "settings.conf" in message

def test_missing_keypair_file(conf_dir):
    write_settings(conf_dir, {
        "deposit_address": DEPOSIT,
        "solana_mint_address": MINT,
        "solana_authority_keypair": str(conf_dir / "missing.json"),
    })
    with pytest.raises(SettingsError, match="missing.json"):
        load_settings_conf(str(conf_dir))

def test_invalid_values_are_all_reported(conf_dir):
    write_settings(conf_dir, {
        "deposit_address": DEPOSIT,
        "solana_mint_address": MINT,
        "solana_authority_keypair": str(conf_dir / "authority.json"),
        "confirmations": "six",
        "fee_percentage": "abc",
        "zcash_network": "regtest",
    })
    with pytest.raises(SettingsError) as exc:
        load_settings_conf(str(conf_dir))

    message = str(exc.value)
    assert "confirmations" in message
    assert "fee_percentage" in message
    assert "zcash_network" in message

def test_deposit_bounds_must_be_ordered(conf_dir):
    write_settings(conf_dir, {
        "deposit_address": DEPOSIT,
        "solana_mint_address": MINT,
        "solana_authority_keypair": str(conf_dir / "authority.json"),
        "min_deposit": "10",
        "max_deposit": "1",
    })
    with pytest.raises(SettingsError, match="min_deposit"):
        load_settings_conf(str(conf_dir))

def test_auto_pause_flag(conf_dir):
    write_settings(conf_dir, {
        "deposit_address": DEPOSIT,
        "solana_mint_address": MINT,
        "solana_authority_keypair": str(conf_dir / "authority.json"),
        "auto_pause_on_deficit": "yes",
    })
    assert load_settings_conf(str(conf_dir))["auto_pause_on_deficit"] is True

def test_zcash_conf_default_port_per_network(tmp_path):
    (tmp_path / "zcash.conf").write_text("rpcuser=alice\nrpcpassword=secret\nnot a setting\n")

    assert load_zcash_conf(str(tmp_path), "testnet")["url"] == "http://127.0.0.1:18232"
    assert load_zcash_conf(str(tmp_path), "mainnet")["url"] == "http://127.0.0.1:8232"

def test_zcash_conf_numeric_password_is_string(tmp_path):
    (tmp_path / "zcash.conf").write_text("rpcuser=alice\nrpcpassword=12345\n")
    assert load_zcash_conf(str(tmp_path))["rpcpassword"] == "12345"

def test_zcash_conf_missing_credentials(tmp_path):
    (tmp_path / "zcash.conf").write_text("rpcuser=alice\n")
    with pytest.raises(ZcashConfigError, match="rpcpassword"):
        load_zcash_conf(str(tmp_path))

def test_zcash_conf_from_environment_only(tmp_path, monkeypatch):
    monkeypatch.setenv("ZCASH_RPC_URL", "http://zcashd:18232")
    monkeypatch.setenv("ZCASH_RPC_USER", "bob")
    monkeypatch.setenv("ZCASH_RPC_PASSWORD", "pw")

    config = load_zcash_conf(str(tmp_path / "nowhere"))

    assert config == {"rpcuser": "bob", "rpcpassword": "pw", "url": "http://zcashd:18232"}

def test_missing_zcash_conf_is_fatal(tmp_path):
    with pytest.raises(FatalConfigError, match="not found"):
        load_zcash_conf(str(tmp_path))
