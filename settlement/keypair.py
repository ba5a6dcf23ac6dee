"""Authority keypair loading."""
import json
import logging
from pathlib import Path

from solders.keypair import Keypair

from config import FatalConfigError

logger = logging.getLogger(__name__)

def load_keypair(path: str) -> Keypair:
    """Load a keypair file holding a JSON array of 64 secret key bytes.

    Raises:
        FatalConfigError: If the file is missing or does not hold a keypair
    """
    keypair_path = Path(path).expanduser()
    if not keypair_path.exists():
        raise FatalConfigError(f"Authority keypair not found: {keypair_path}")

    try:
        secret = json.loads(keypair_path.read_text())
        keypair = Keypair.from_bytes(bytes(secret))
    except (ValueError, TypeError) as e:
        raise FatalConfigError(f"Invalid authority keypair in {keypair_path}: {e}")

    logger.info(f"Loaded authority keypair {keypair.pubkey()}")
    return keypair
