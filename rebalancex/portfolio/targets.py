"""Target allocation parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Union

from rebalancex.config import ChainConfig
from rebalancex.errors import ConfigurationError

SUM_TOLERANCE = 0.01


@dataclass(frozen=True)
class TargetAllocation:
    chain: str
    percentage: float


def parse_target_allocation(target: str, chains: Sequence[Union[str, ChainConfig]]) -> List[TargetAllocation]:
    """Parse a comma-separated percentage string such as ``"40,30,30"``.

    Values pair with ``chains`` by position. The count must match, every value
    must be a non-negative number and the total must be within 0.01 of 100.
    """

    names = [c.name if isinstance(c, ChainConfig) else c for c in chains]
    raw = [part.strip() for part in target.split(",")]
    try:
        percentages = [float(part) for part in raw]
    except ValueError as exc:
        raise ConfigurationError(f"Target allocation {target!r} contains a non-numeric value") from exc

    if len(percentages) != len(names):
        raise ConfigurationError(
            f"Target allocation value count mismatch: expected {len(names)} values, got {len(percentages)}"
        )
    negative = [name for name, pct in zip(names, percentages) if pct < 0]
    if negative:
        raise ConfigurationError(f"Target allocation has negative values for: {', '.join(negative)}")

    total = sum(percentages)
    if abs(total - 100) > SUM_TOLERANCE:
        raise ConfigurationError(f"Target allocation does not sum to 100% (got {total:g}%)")

    return [TargetAllocation(chain=name, percentage=pct) for name, pct in zip(names, percentages)]
