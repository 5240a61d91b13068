"""Portfolio helpers."""

from .state import ChainBalance, compute_allocations, format_usdc, to_base_units, total_amount
from .targets import TargetAllocation, parse_target_allocation
from .rebalance import (
    ActionPlanner,
    Deviation,
    RebalanceAction,
    calculate_deviations,
    needs_rebalancing,
    target_amount,
)

__all__ = [
    "ActionPlanner",
    "ChainBalance",
    "Deviation",
    "RebalanceAction",
    "TargetAllocation",
    "calculate_deviations",
    "compute_allocations",
    "format_usdc",
    "needs_rebalancing",
    "parse_target_allocation",
    "target_amount",
    "to_base_units",
    "total_amount",
]
