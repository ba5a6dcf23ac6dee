"""Configuration module for loading and managing bridge settings"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional

from .lib.errors import FatalConfigError
from .lib.load_settings_conf import load_settings_conf, SettingsError
from .lib.load_zcash_conf import load_zcash_conf, ZcashConfigError

__all__ = [
    'BridgeSettings',
    'load_config',
    'FatalConfigError',
    'SettingsError',
    'ZcashConfigError',
]

@dataclass(frozen=True)
class BridgeSettings:
    """Immutable bridge configuration, built once at startup."""
    deposit_address: str
    zcash_rpc_url: str
    zcash_rpc_user: str
    zcash_rpc_password: str
    solana_rpc_url: str
    solana_mint_address: str
    solana_authority_keypair: str
    solana_program_id: Optional[str] = None
    zcash_network: str = 'testnet'
    db_url: str = 'postgresql://root@localhost:26257/solz_bridge?sslmode=disable'
    confirmations: int = 6
    min_deposit: Decimal = Decimal('0.001')
    max_deposit: Decimal = Decimal('100')
    fee_percentage: Decimal = Decimal('0.1')
    poll_interval: int = 30
    reconcile_interval: int = 60
    payment_fee: Decimal = Decimal('0.0001')
    payment_poll_interval: Decimal = Decimal('1')
    payment_poll_attempts: int = 60
    burn_signature_limit: int = 50
    auto_pause_on_deficit: bool = False
    api_host: str = '127.0.0.1'
    api_port: int = 8000

    @property
    def is_testnet(self) -> bool:
        return self.zcash_network == 'testnet'

    @property
    def fee_basis_points(self) -> int:
        """Fee as basis points, the unit the on-chain program stores."""
        return int(self.fee_percentage * 100)

    def describe(self) -> Dict[str, Any]:
        """Settings safe to print or log (no credentials)."""
        return {
            'deposit_address': self.deposit_address,
            'zcash_network': self.zcash_network,
            'zcash_rpc_url': self.zcash_rpc_url,
            'solana_rpc_url': self.solana_rpc_url,
            'solana_program_id': self.solana_program_id,
            'solana_mint_address': self.solana_mint_address,
            'confirmations': self.confirmations,
            'min_deposit': str(self.min_deposit),
            'max_deposit': str(self.max_deposit),
            'fee_percentage': str(self.fee_percentage),
            'poll_interval': self.poll_interval,
            'reconcile_interval': self.reconcile_interval,
            'auto_pause_on_deficit': self.auto_pause_on_deficit,
        }

def load_config(settings_path: str = ".") -> BridgeSettings:
    """Load settings.conf and zcash.conf into a BridgeSettings instance.

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        BridgeSettings

    Raises:
        FatalConfigError: If either configuration source is missing or invalid
    """
    try:
        settings = load_settings_conf(settings_path)
        zcash_conf = load_zcash_conf(settings['zcash_root'], settings['zcash_network'])
    except (SettingsError, ZcashConfigError) as e:
        # Re-raise the error but provide more context
        raise type(e)(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure both settings.conf and zcash.conf are properly configured."
        )

    return BridgeSettings(
        deposit_address=settings['deposit_address'],
        zcash_rpc_url=zcash_conf['url'],
        zcash_rpc_user=zcash_conf['rpcuser'],
        zcash_rpc_password=zcash_conf['rpcpassword'],
        solana_rpc_url=settings['solana_rpc_url'],
        solana_mint_address=settings['solana_mint_address'],
        solana_authority_keypair=settings['solana_authority_keypair'],
        solana_program_id=settings['solana_program_id'] or None,
        zcash_network=settings['zcash_network'],
        db_url=settings['db_url'],
        confirmations=settings['confirmations'],
        min_deposit=settings['min_deposit'],
        max_deposit=settings['max_deposit'],
        fee_percentage=settings['fee_percentage'],
        poll_interval=settings['poll_interval'],
        reconcile_interval=settings['reconcile_interval'],
        payment_fee=settings['payment_fee'],
        payment_poll_interval=settings['payment_poll_interval'],
        payment_poll_attempts=settings['payment_poll_attempts'],
        burn_signature_limit=settings['burn_signature_limit'],
        auto_pause_on_deficit=settings['auto_pause_on_deficit'],
        api_host=settings['api_host'],
        api_port=settings['api_port'],
    )
