"""Cycle report builders."""

from __future__ import annotations

from typing import List

import pandas as pd

from rebalancex.exec.cycle import CycleResult
from rebalancex.portfolio import format_usdc

ALLOCATION_COLUMNS = ["chain", "balance_usdc", "current_pct", "target_pct", "deviation_pct", "status"]
OUTCOME_COLUMNS = [
    "source",
    "destination",
    "amount_usdc",
    "success",
    "stage",
    "burn_tx",
    "mint_tx",
    "message_id",
    "error",
]


def build_allocation_report(result: CycleResult) -> pd.DataFrame:
    """Return a DataFrame with one row per chain: balance, current vs target, deviation."""

    amounts = {b.chain: b.amount for b in result.balances}
    rows: List[dict] = []
    for dev in result.deviations:
        rows.append(
            {
                "chain": dev.chain,
                "balance_usdc": format_usdc(amounts.get(dev.chain, 0)),
                "current_pct": round(dev.current, 2),
                "target_pct": dev.target,
                "deviation_pct": round(dev.deviation, 2),
                "status": "rebalance" if abs(dev.deviation) > result.threshold_pct else "ok",
            }
        )
    return pd.DataFrame(rows, columns=ALLOCATION_COLUMNS)


def build_outcome_report(result: CycleResult) -> pd.DataFrame:
    rows: List[dict] = []
    for action, outcome in zip(result.actions, result.outcomes):
        rows.append(
            {
                "source": action.source.name,
                "destination": action.destination.name,
                "amount_usdc": format_usdc(action.amount),
                "success": outcome.success,
                "stage": (outcome.failed_stage or outcome.stage).value,
                "burn_tx": outcome.burn_tx,
                "mint_tx": outcome.mint_tx,
                "message_id": outcome.message_id,
                "error": outcome.error,
            }
        )
    return pd.DataFrame(rows, columns=OUTCOME_COLUMNS)
