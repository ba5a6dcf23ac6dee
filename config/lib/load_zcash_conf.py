"""Zcash configuration loader module.

This module handles loading and parsing of the Zcash node's configuration file (zcash.conf)
to obtain the JSON-RPC endpoint and credentials the bridge uses against zcashd.

The configuration file uses a simple key=value format, with one setting per line.
Comments start with #.

Required settings:
    - rpcuser (RPC authentication username)
    - rpcpassword (RPC authentication password)

Optional settings:
    - rpcport (defaults to 8232 on mainnet, 18232 on testnet)
    - rpcbind (defaults to 127.0.0.1)
    - testnet=1

Environment overrides (ZCASH_RPC_URL, ZCASH_RPC_USER, ZCASH_RPC_PASSWORD) take
precedence; when all three are set the file is optional.

Example zcash.conf:
    testnet=1
    server=1
    rpcuser=user
    rpcpassword=password
    rpcport=18232

Raises:
    ZcashConfigError: If the configuration file is missing, invalid, or missing required settings
"""
from pathlib import Path
from typing import Dict, Any, Union, List
import logging
import os

from .errors import FatalConfigError

logger = logging.getLogger(__name__)

DEFAULT_RPC_PORTS = {
    'mainnet': 8232,
    'testnet': 18232,
}

class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing:
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)

        if self.invalid:
            if messages:
                messages.append("")
            messages.append("Invalid setting types:")
            messages.extend(f"  - {item}" for item in self.invalid)

        return "\n".join(messages)

class ZcashConfigError(FatalConfigError):
    """Raised when there's an error loading Zcash node configuration"""
    pass

def parse_value(value: str) -> Union[str, int, bool]:
    """Parse configuration values to appropriate types"""
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False

    try:
        return int(value)
    except ValueError:
        return value

def read_conf_file(config_path: Path) -> Dict[str, Any]:
    """Read a key=value node configuration file."""
    config = {}
    with open(config_path, 'r') as f:
        lines = f.readlines()

    for line in lines:
        line = line.strip()
        if line and not line.startswith('#'):
            try:
                key, value = line.split('=', 1)
                config[key.strip()] = parse_value(value.strip())
            except ValueError:
                logger.warning(f"Skipping invalid line in zcash.conf: {line}")
                continue
    return config

def load_zcash_conf(zcash_root: str, network: str = 'testnet') -> Dict[str, Any]:
    """
    Load and parse zcash.conf and resolve the RPC connection settings

    Args:
        zcash_root: Path to Zcash configuration directory
        network: mainnet or testnet, used for the default RPC port

    Returns:
        Dictionary with url, rpcuser, rpcpassword plus every raw setting from the file

    Raises:
        ZcashConfigError: If file not found, parsing fails, or validation fails
    """
    config_path = Path(zcash_root).expanduser() / 'zcash.conf'
    env_url = os.environ.get('ZCASH_RPC_URL')
    env_user = os.environ.get('ZCASH_RPC_USER')
    env_password = os.environ.get('ZCASH_RPC_PASSWORD')

    config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            config = read_conf_file(config_path)
        except OSError as e:
            raise ZcashConfigError(f"Error parsing zcash.conf: {str(e)}")
    elif not (env_url and env_user and env_password):
        raise ZcashConfigError(
            f"Zcash configuration file not found at: {config_path}\n"
            "Please ensure zcash.conf exists or set ZCASH_RPC_URL, "
            "ZCASH_RPC_USER and ZCASH_RPC_PASSWORD"
        )

    if env_user:
        config['rpcuser'] = env_user
    if env_password:
        config['rpcpassword'] = env_password

    errors = ConfigValidationError()

    for key in ('rpcuser', 'rpcpassword'):
        if key not in config:
            errors.missing.append(key)
        elif not isinstance(config[key], str):
            config[key] = str(config[key])

    if 'rpcport' in config and not isinstance(config['rpcport'], int):
        errors.invalid.append("rpcport (expected int)")

    if errors.has_errors():
        raise ZcashConfigError(
            "Zcash Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    if env_url:
        config['url'] = env_url
    else:
        port = config.get('rpcport', DEFAULT_RPC_PORTS[network])
        host = config.get('rpcbind', '127.0.0.1')
        config['url'] = f"http://{host}:{port}"

    return config
