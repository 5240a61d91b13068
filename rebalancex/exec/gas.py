"""Gas limit policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rebalancex.config import GasConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasPolicy:
    buffer_pct: int = 20
    max_gas_limit: int = 500_000

    @classmethod
    def from_config(cls, config: GasConfig) -> "GasPolicy":
        return cls(buffer_pct=config.buffer_pct, max_gas_limit=config.max_gas_limit)

    def limit(self, estimate: int) -> int:
        """Buffered estimate, capped at the ceiling. Over the ceiling submits at the ceiling."""

        buffered = estimate * (100 + self.buffer_pct) // 100
        if buffered > self.max_gas_limit:
            logger.warning(
                "Gas estimate %d (+%d%% = %d) exceeds ceiling, submitting at %d",
                estimate,
                self.buffer_pct,
                buffered,
                self.max_gas_limit,
            )
            return self.max_gas_limit
        return buffered
