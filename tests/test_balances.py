from __future__ import annotations

from types import SimpleNamespace

import pytest

from rebalancex.config import BalanceFailurePolicy, default_chains, load_config
from rebalancex.data import RpcBalanceSource, StaticBalanceSource, fetch_balances, get_balance_source
from rebalancex.data.chain import SessionRegistry
from rebalancex.errors import BalanceReadError, RebalanceError

USDC = 10**6
CHAINS = default_chains()
ORDER = [CHAINS["sepolia"], CHAINS["polygonAmoy"], CHAINS["arbitrumSepolia"]]
WALLET = "0x" + "ab" * 20


class FlakySource:
    def __init__(self, balances, failing=()):
        self.balances = balances
        self.failing = set(failing)

    def read_balance(self, chain, address):
        if chain.name in self.failing:
            raise ConnectionError(f"{chain.name} rpc unreachable")
        return self.balances[chain.name]


def test_fetch_preserves_chain_order():
    source = StaticBalanceSource({"arbitrumSepolia": 3 * USDC, "sepolia": 1 * USDC, "polygonAmoy": 2 * USDC})
    balances = fetch_balances(source, ORDER, WALLET)
    assert [(b.chain, b.amount) for b in balances] == [
        ("sepolia", 1 * USDC),
        ("polygonAmoy", 2 * USDC),
        ("arbitrumSepolia", 3 * USDC),
    ]


def test_abort_policy_raises_on_failed_read():
    source = FlakySource({"sepolia": 1, "polygonAmoy": 2, "arbitrumSepolia": 3}, failing=["polygonAmoy"])
    with pytest.raises(BalanceReadError) as excinfo:
        fetch_balances(source, ORDER, WALLET, BalanceFailurePolicy.ABORT)
    assert excinfo.value.chain == "polygonAmoy"


def test_zero_policy_substitutes_zero(caplog):
    source = FlakySource({"sepolia": 1, "polygonAmoy": 2, "arbitrumSepolia": 3}, failing=["polygonAmoy"])
    with caplog.at_level("WARNING"):
        balances = fetch_balances(source, ORDER, WALLET, BalanceFailurePolicy.ZERO)
    assert [b.amount for b in balances] == [1, 0, 3]
    assert "polygonAmoy" in caplog.text


def test_all_chains_failing_is_a_cycle_failure():
    source = FlakySource({}, failing=["sepolia", "polygonAmoy", "arbitrumSepolia"])
    with pytest.raises(RebalanceError, match="all chains"):
        fetch_balances(source, ORDER, WALLET, BalanceFailurePolicy.ZERO)


def test_rpc_source_uses_registry_session():
    session = SimpleNamespace(usdc_balance=lambda owner: 5 * USDC if owner == WALLET else 0)
    registry = SessionRegistry(factory=lambda chain: session)
    assert RpcBalanceSource(registry).read_balance(CHAINS["sepolia"], WALLET) == 5 * USDC


def test_get_balance_source_by_provider():
    registry = SessionRegistry(factory=lambda chain: None)
    static_cfg = load_config({"balances": {"provider": "static", "static": {"sepolia": 1}}})
    assert isinstance(get_balance_source(static_cfg, registry), StaticBalanceSource)
    assert isinstance(get_balance_source(load_config({}), registry), RpcBalanceSource)


def test_static_source_missing_chain():
    with pytest.raises(KeyError):
        StaticBalanceSource({}).read_balance(CHAINS["sepolia"], WALLET)
