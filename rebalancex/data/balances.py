"""Balance sources for the rebalance cycle."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Protocol, Sequence

from rebalancex.config import AppConfig, BalanceFailurePolicy, BalanceProvider, ChainConfig
from rebalancex.errors import BalanceReadError, RebalanceError
from rebalancex.portfolio import ChainBalance, format_usdc

from .chain import SessionRegistry

logger = logging.getLogger(__name__)


class BalanceSource(Protocol):
    def read_balance(self, chain: ChainConfig, address: str) -> int: ...


class RpcBalanceSource:
    """Reads the USDC ``balanceOf`` through the cached chain session."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def read_balance(self, chain: ChainConfig, address: str) -> int:
        return self.registry.get(chain).usdc_balance(address)


class StaticBalanceSource:
    def __init__(self, balances: Mapping[str, int]):
        self.balances = dict(balances)

    def read_balance(self, chain: ChainConfig, address: str) -> int:
        if chain.name not in self.balances:
            raise KeyError(f"No static balance configured for {chain.name}")
        return int(self.balances[chain.name])


def fetch_balances(
    source: BalanceSource,
    chains: Sequence[ChainConfig],
    address: str,
    policy: BalanceFailurePolicy = BalanceFailurePolicy.ABORT,
    max_workers: int = 4,
) -> List[ChainBalance]:
    """Read every chain concurrently and return balances in chain order.

    With ``ABORT`` the first failed chain raises ``BalanceReadError``. With
    ``ZERO`` failed chains read as 0 with a warning. When every chain fails the
    cycle cannot proceed under either policy.
    """

    def _read(chain: ChainConfig):
        try:
            return source.read_balance(chain, address), None
        except Exception as exc:  # noqa: BLE001
            return None, exc

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(chains)))) as pool:
        results = list(pool.map(_read, chains))

    failures: Dict[str, Exception] = {c.name: err for c, (_, err) in zip(chains, results) if err is not None}
    if chains and len(failures) == len(chains):
        name, err = next(iter(failures.items()))
        raise RebalanceError(f"Balance source unavailable for all chains (first error on {name}: {err})")

    balances = []
    for chain, (amount, err) in zip(chains, results):
        if err is not None:
            if policy == BalanceFailurePolicy.ABORT:
                raise BalanceReadError(chain.name, err)
            logger.warning("Failed to fetch balance on %s, using 0: %s", chain.name, err)
            amount = 0
        logger.info("Balance: %s %s USDC", chain.name, format_usdc(amount))
        balances.append(ChainBalance(chain=chain.name, amount=amount))
    return balances


def get_balance_source(config: AppConfig, registry: SessionRegistry) -> BalanceSource:
    if config.balances.provider == BalanceProvider.STATIC:
        return StaticBalanceSource(config.balances.static or {})
    return RpcBalanceSource(registry)
