"""One rebalance pass: balances -> allocations -> deviations -> actions -> transfers."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from eth_account import Account

from rebalancex.config import AppConfig, BalanceFailurePolicy, BalanceProvider, ChainConfig, load_private_key, resolve_chains
from rebalancex.data import BalanceSource, SessionRegistry, fetch_balances, get_balance_source
from rebalancex.errors import ConfigurationError
from rebalancex.portfolio import (
    ActionPlanner,
    ChainBalance,
    Deviation,
    RebalanceAction,
    TargetAllocation,
    calculate_deviations,
    compute_allocations,
    needs_rebalancing,
    parse_target_allocation,
)

from .attestation import AttestationClient, AttestationPoller, PollSchedule
from .gas import GasPolicy
from .pipeline import TransferOutcome, TransferPipeline
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    balances: List[ChainBalance]
    targets: List[TargetAllocation]
    deviations: List[Deviation]
    threshold_pct: float
    actions: List[RebalanceAction] = field(default_factory=list)
    outcomes: List[TransferOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(b.amount for b in self.balances)

    @property
    def needs_rebalancing(self) -> bool:
        return needs_rebalancing(self.deviations, self.threshold_pct)

    @property
    def rebalanced(self) -> bool:
        return bool(self.outcomes)

    @property
    def failed(self) -> bool:
        return any(not o.success for o in self.outcomes)


class RebalanceCycle:
    def __init__(
        self,
        chains: Sequence[ChainConfig],
        targets: Sequence[TargetAllocation],
        threshold_pct: float,
        balance_source: BalanceSource,
        pipeline: TransferPipeline,
        address: str,
        failure_policy: BalanceFailurePolicy = BalanceFailurePolicy.ABORT,
        max_workers: int = 4,
    ):
        self.chains = list(chains)
        self.targets = list(targets)
        self.threshold_pct = threshold_pct
        self.balance_source = balance_source
        self.pipeline = pipeline
        self.address = address
        self.failure_policy = failure_policy
        self.max_workers = max_workers
        self.planner = ActionPlanner(threshold_pct, {c.name: c for c in self.chains})

    def evaluate(self) -> CycleResult:
        """Read balances and plan actions without executing them."""

        raw = fetch_balances(self.balance_source, self.chains, self.address, self.failure_policy, self.max_workers)
        balances = compute_allocations(raw)
        deviations = calculate_deviations(balances, self.targets)
        for dev in deviations:
            status = "REBALANCE" if abs(dev.deviation) > self.threshold_pct else "ok"
            logger.info(
                "%s: %.2f%% -> %g%% (%+.2f%%) %s", dev.chain, dev.current, dev.target, dev.deviation, status
            )

        result = CycleResult(
            balances=balances, targets=self.targets, deviations=deviations, threshold_pct=self.threshold_pct
        )
        if not result.needs_rebalancing:
            logger.info("Portfolio is balanced. No action needed.")
            return result
        result.actions = self.planner.plan(balances, self.targets)
        return result

    def run(self) -> CycleResult:
        result = self.evaluate()
        if not result.actions:
            return result

        logger.info("%d action(s) to execute", len(result.actions))
        for action in result.actions:
            outcome = self.pipeline.execute(action)
            if not outcome.success:
                logger.error("Transfer %s failed: %s", action.describe(), outcome.error)
            result.outcomes.append(outcome)

        succeeded = sum(1 for o in result.outcomes if o.success)
        logger.info("Cycle finished: %d/%d transfer(s) succeeded", succeeded, len(result.outcomes))
        return result


def wallet_address(config: AppConfig, private_key: Optional[str]) -> Optional[str]:
    if config.wallet.address:
        return config.wallet.address
    if private_key:
        return Account.from_key(private_key).address
    return None


def build_cycle(
    config: AppConfig,
    registry: Optional[SessionRegistry] = None,
    sleep: Callable[[float], None] = time.sleep,
    execute: bool = True,
) -> RebalanceCycle:
    """Wire a cycle from configuration. Raises ``ConfigurationError`` before any chain is touched.

    A signing key is required only when transfers will actually be submitted
    (``execute`` and not dry-run).
    """

    chains = resolve_chains(config)
    targets = parse_target_allocation(config.rebalance.target, chains)

    if execute and not config.rebalance.dry_run:
        private_key = load_private_key(config)
    else:
        private_key = os.environ.get(config.wallet.private_key_env)

    address = wallet_address(config, private_key)
    if address is None:
        if config.balances.provider == BalanceProvider.RPC:
            raise ConfigurationError(
                f"Set wallet.address or {config.wallet.private_key_env} to read balances"
            )
        address = ""

    if registry is None:
        registry = SessionRegistry(private_key=private_key, receipt_timeout=config.transactions.receipt_timeout)
    poller = AttestationPoller(
        AttestationClient.from_config(config.attestation).get,
        PollSchedule.from_config(config.attestation),
        sleep=sleep,
    )
    pipeline = TransferPipeline(
        registry,
        poller,
        retry=RetryPolicy.from_config(config.retry),
        gas=GasPolicy.from_config(config.gas),
        dry_run=config.rebalance.dry_run,
        sleep=sleep,
    )
    return RebalanceCycle(
        chains,
        targets,
        config.rebalance.threshold_pct,
        get_balance_source(config, registry),
        pipeline,
        address,
        failure_policy=config.balances.on_read_failure,
        max_workers=config.balances.max_workers,
    )
