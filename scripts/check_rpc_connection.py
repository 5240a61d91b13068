"""Simple RPC connectivity test for the configured chains."""

from __future__ import annotations

import argparse

from dotenv import load_dotenv

from rebalancex.config import AppConfig, load_config, resolve_chains
from rebalancex.data.chain import ChainSession


def main() -> None:
    parser = argparse.ArgumentParser(description="Test RPC connectivity for each chain")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--chains", help="Comma-separated chain names (default: configured chains)")
    args = parser.parse_args()

    load_dotenv()
    config = load_config(args.config) if args.config else AppConfig()
    names = args.chains.split(",") if args.chains else None
    for chain in resolve_chains(config, names):
        print(f"Connecting to {chain.name} at {chain.rpc_url}...")
        web3 = ChainSession(chain).web3
        chain_id = web3.eth.chain_id
        if chain_id != chain.chain_id:
            print(f"  WARNING: RPC reports chain id {chain_id}, expected {chain.chain_id}")
        print(f"  Connected. Latest block: {web3.eth.block_number}")


if __name__ == "__main__":
    main()
