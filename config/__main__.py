"""Command line interface for testing configuration loading"""
from . import load_config
from pathlib import Path

def main():
    """Display loaded configuration"""
    settings = load_config()

    print("\nBridge Configuration:")
    print("-" * 50)
    for key, value in settings.describe().items():
        print(f"{key}: {value}")

    # Save example configuration files
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# Path to Zcash configuration directory
zcash_root = /home/user/.zcash/
zcash_network = testnet
deposit_address = ztestsapling1...
confirmations = 6
min_deposit = 0.001
max_deposit = 100
fee_percentage = 0.1
solana_rpc_url = https://api.devnet.solana.com
solana_program_id =
solana_mint_address =
solana_authority_keypair = /home/user/.config/solana/bridge-authority.json
db_url = postgresql://root@localhost:26257/solz_bridge?sslmode=disable
""")

    with open(examples_dir / "zcash.conf.example", "w") as f:
        f.write("""# Zcash configuration file
testnet=1
server=1
rpcbind=127.0.0.1
rpcport=18232
rpcallowip=127.0.0.1
rpcuser=user
rpcpassword=password
""")

if __name__ == "__main__":
    main()
