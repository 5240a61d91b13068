"""Exception types shared across the rebalancer."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    REJECTED = "rejected"
    ATTESTATION_TIMEOUT = "attestation_timeout"


class RebalanceError(Exception):
    """Base class for rebalancer failures."""


class ConfigurationError(RebalanceError, ValueError):
    """Malformed targets, unknown chains or missing settings. Raised before any cycle runs."""


class BalanceReadError(RebalanceError):
    def __init__(self, chain: str, cause: Exception):
        super().__init__(f"Failed to read balance on {chain}: {cause}")
        self.chain = chain
        self.cause = cause


class TransactionReverted(RebalanceError):
    def __init__(self, chain: str, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} on {chain} execution reverted")
        self.chain = chain
        self.tx_hash = tx_hash


class AttestationTimeout(RebalanceError):
    def __init__(self, message_id: str, attempts: int, elapsed: float):
        super().__init__(
            f"Attestation timeout for {message_id} after {attempts} attempts ({elapsed:.0f}s)"
        )
        self.message_id = message_id
        self.attempts = attempts
        self.elapsed = elapsed


class StepFailed(RebalanceError):
    """A pipeline step exhausted its retry budget or hit a non-retryable error."""

    def __init__(
        self,
        step: str,
        kind: ErrorKind,
        cause: Optional[BaseException] = None,
        attempts: int = 1,
        tx_hash: Optional[str] = None,
    ):
        reason = str(cause) if cause is not None else kind.value
        super().__init__(f"{step} failed ({kind.value}) after {attempts} attempt(s): {reason}")
        self.step = step
        self.kind = kind
        self.cause = cause
        self.attempts = attempts
        # Set once the transaction was broadcast; it may still be mined later.
        self.tx_hash = tx_hash


__all__ = [
    "AttestationTimeout",
    "BalanceReadError",
    "ConfigurationError",
    "ErrorKind",
    "RebalanceError",
    "StepFailed",
    "TransactionReverted",
]
