"""Rebalance logic."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence

from rebalancex.config import ChainConfig
from rebalancex.errors import ConfigurationError

from .state import BalanceInput, ChainBalance, compute_allocations, format_usdc
from .targets import TargetAllocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deviation:
    chain: str
    current: float
    target: float
    deviation: float  # positive = over-allocated, negative = under-allocated


@dataclass(frozen=True)
class RebalanceAction:
    source: ChainConfig
    destination: ChainConfig
    amount: int

    def describe(self) -> str:
        return f"{format_usdc(self.amount)} USDC {self.source.name} -> {self.destination.name}"


def calculate_deviations(balances: Iterable[ChainBalance], targets: Iterable[TargetAllocation]) -> List[Deviation]:
    """Current minus target percentage per chain. A chain without a target is drained (0%)."""

    by_chain = {t.chain: t.percentage for t in targets}
    deviations = []
    for balance in balances:
        target_pct = by_chain.get(balance.chain, 0.0)
        deviations.append(
            Deviation(
                chain=balance.chain,
                current=balance.percentage,
                target=target_pct,
                deviation=balance.percentage - target_pct,
            )
        )
    return deviations


def needs_rebalancing(deviations: Iterable[Deviation], threshold: float) -> bool:
    return any(abs(d.deviation) > threshold for d in deviations)


def target_amount(total: int, percentage: float) -> int:
    # Basis-point integer math keeps amounts exact in base units.
    return total * round(percentage * 100) // 10000


@dataclass
class ActionPlanner:
    threshold_pct: float
    chains: Mapping[str, ChainConfig] = field(default_factory=dict)

    def _chain(self, name: str) -> ChainConfig:
        try:
            return self.chains[name]
        except KeyError:
            raise ConfigurationError(f"Unknown chain: {name}") from None

    def plan(self, balances: Sequence[BalanceInput], targets: Sequence[TargetAllocation]) -> List[RebalanceAction]:
        allocations = compute_allocations(balances)
        total = sum(b.amount for b in allocations)
        if total <= 0:
            logger.info("Total balance is zero; nothing to rebalance")
            return []

        deviations = calculate_deviations(allocations, targets)
        over = sorted(
            (d for d in deviations if d.deviation > self.threshold_pct),
            key=lambda d: d.deviation,
            reverse=True,
        )
        under = sorted(
            (d for d in deviations if d.deviation < -self.threshold_pct),
            key=lambda d: d.deviation,
        )

        # Local simulation over a copy; the inputs are never touched.
        working: Dict[str, int] = {b.chain: b.amount for b in allocations}
        targets_by_chain = {d.chain: target_amount(total, d.target) for d in deviations}

        actions: List[RebalanceAction] = []
        over_idx = under_idx = 0
        while over_idx < len(over) and under_idx < len(under):
            src = over[over_idx].chain
            dst = under[under_idx].chain
            excess = working[src] - targets_by_chain[src]
            deficit = targets_by_chain[dst] - working[dst]
            amount = min(excess, deficit)

            if amount > 0:
                action = RebalanceAction(source=self._chain(src), destination=self._chain(dst), amount=amount)
                actions.append(action)
                logger.info("Decision: TRANSFER %s", action.describe())
                working[src] -= amount
                working[dst] += amount

            if excess <= deficit:
                over_idx += 1
            if deficit <= excess:
                under_idx += 1

        if actions:
            logger.info("Generated %d rebalancing action(s)", len(actions))
        else:
            logger.info("No rebalancing needed - all chains within threshold")
        return actions
