"""Transfer execution and the rebalance cycle."""

from .attestation import AttestationClient, AttestationPoller, PollSchedule
from .cycle import CycleResult, RebalanceCycle, build_cycle
from .gas import GasPolicy
from .loop import RebalanceLoop
from .pipeline import TransferOutcome, TransferPipeline, TransferStage
from .retry import RetryPolicy, call_with_retry, classify_error, is_retryable

__all__ = [
    "AttestationClient",
    "AttestationPoller",
    "CycleResult",
    "GasPolicy",
    "PollSchedule",
    "RebalanceCycle",
    "RebalanceLoop",
    "RetryPolicy",
    "TransferOutcome",
    "TransferPipeline",
    "TransferStage",
    "build_cycle",
    "call_with_retry",
    "classify_error",
    "is_retryable",
]
