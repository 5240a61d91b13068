"""Print USDC and native gas balances of a wallet on every configured chain."""

from __future__ import annotations

import argparse
import json
import os

from dotenv import load_dotenv
from web3 import Web3

from rebalancex.config import AppConfig, load_config, resolve_chains
from rebalancex.data.chain import ChainSession
from rebalancex.exec.cycle import wallet_address
from rebalancex.portfolio import format_usdc


def main() -> None:
    parser = argparse.ArgumentParser(description="Show wallet holdings per chain")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--address", help="Wallet address (default: wallet.address or the signing key)")
    args = parser.parse_args()

    load_dotenv()
    config = load_config(args.config) if args.config else AppConfig()
    address = args.address or wallet_address(config, os.environ.get(config.wallet.private_key_env))
    if not address:
        raise SystemExit(f"Pass --address or set {config.wallet.private_key_env}")

    holdings = []
    for chain in resolve_chains(config):
        session = ChainSession(chain)
        native = session.web3.eth.get_balance(Web3.to_checksum_address(address))
        holdings.append(
            {
                "chain": chain.name,
                "address": address,
                "usdc": format_usdc(session.usdc_balance(address)),
                "native": float(Web3.from_wei(native, "ether")),
            }
        )
    print(json.dumps(holdings, indent=2))


if __name__ == "__main__":
    main()
