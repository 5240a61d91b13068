"""Balance and chain data sources."""

from .balances import BalanceSource, RpcBalanceSource, StaticBalanceSource, fetch_balances, get_balance_source
from .chain import ChainSession, SessionRegistry

__all__ = [
    "BalanceSource",
    "ChainSession",
    "RpcBalanceSource",
    "SessionRegistry",
    "StaticBalanceSource",
    "fetch_balances",
    "get_balance_source",
]
