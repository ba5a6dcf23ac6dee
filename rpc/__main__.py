"""Command line interface for testing RPC connectivity to both chains"""
import asyncio

from config import load_config
from . import ZcashRPC, SolanaRPC, RPCError

async def test_rpc():
    """Check that the Zcash node and the Solana cluster answer"""
    settings = load_config()
    zcash = ZcashRPC(settings.zcash_rpc_url, settings.zcash_rpc_user, settings.zcash_rpc_password)
    solana = SolanaRPC(settings.solana_rpc_url)

    print("\nTesting Zcash node:")
    print("-" * 50)
    try:
        info = await zcash.getblockchaininfo()
        print(f"  Chain: {info.get('chain')}")
        print(f"  Blocks: {info.get('blocks')}")
        validation = await zcash.z_validateaddress(settings.deposit_address)
        print(f"  Deposit address valid: {validation.get('isvalid')}")
    except RPCError as e:
        print(f"  Failed: {e}")

    print("\nTesting Solana cluster:")
    print("-" * 50)
    try:
        version = await solana.getVersion()
        print(f"  Version: {version.get('solana-core')}")
        slot = await solana.getSlot()
        print(f"  Slot: {slot}")
    except RPCError as e:
        print(f"  Failed: {e}")

if __name__ == "__main__":
    asyncio.run(test_rpc())
