"""Per-chain balances and allocation percentages."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Tuple, Union

USDC_DECIMALS = 6


@dataclass(frozen=True)
class ChainBalance:
    chain: str
    amount: int
    percentage: float = 0.0

    @property
    def display_percentage(self) -> float:
        return round(self.percentage, 2)


BalanceInput = Union[ChainBalance, Tuple[str, int]]


def _as_balance(item: BalanceInput) -> ChainBalance:
    if isinstance(item, ChainBalance):
        return item
    chain, amount = item
    return ChainBalance(chain=chain, amount=int(amount))


def total_amount(balances: Iterable[BalanceInput]) -> int:
    return sum(_as_balance(b).amount for b in balances)


def compute_allocations(balances: Iterable[BalanceInput]) -> List[ChainBalance]:
    """Annotate each balance with its share of the pool, in percent.

    Percentages keep full float precision; round only for display. A zero pool
    yields 0.0 for every chain. Ordering and amounts are preserved.
    """

    items = [_as_balance(b) for b in balances]
    total = sum(b.amount for b in items)
    if total == 0:
        return [ChainBalance(chain=b.chain, amount=b.amount, percentage=0.0) for b in items]
    return [ChainBalance(chain=b.chain, amount=b.amount, percentage=b.amount * 100 / total) for b in items]


def format_usdc(amount: int) -> str:
    return f"{Decimal(amount).scaleb(-USDC_DECIMALS):.2f}"


def to_base_units(value: Union[str, float, Decimal]) -> int:
    return int(Decimal(str(value)).scaleb(USDC_DECIMALS))
