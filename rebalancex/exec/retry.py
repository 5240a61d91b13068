"""Retry policy and error classification for on-chain calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, TypeVar

from rebalancex.config import RetryConfig
from rebalancex.errors import ErrorKind, StepFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_MARKERS = (
    "insufficient funds",
    "nonce too low",
    "replacement transaction underpriced",
    "execution reverted",
    "reverted",
)


def is_retryable(message: str) -> bool:
    """False for deterministic rejections; everything else is treated as transient."""

    text = message.lower()
    return not any(marker in text for marker in NON_RETRYABLE_MARKERS)


def classify_error(exc: BaseException) -> ErrorKind:
    return ErrorKind.TRANSIENT if is_retryable(str(exc)) else ErrorKind.REJECTED


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
        )

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""

        return min(self.initial_delay * self.multiplier**retry, self.max_delay)

    def delays(self) -> List[float]:
        return [self.delay_for(i) for i in range(self.max_attempts - 1)]


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    step: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` until it succeeds, fails deterministically, or the budget runs out."""

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except Exception as exc:  # noqa: BLE001
            kind = classify_error(exc)
            if kind is ErrorKind.REJECTED:
                logger.error("%s rejected (attempt %d): %s", step, attempt, exc)
                raise StepFailed(step, kind, exc, attempts=attempt) from exc
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", step, attempt, exc)
                raise StepFailed(step, kind, exc, attempts=attempt) from exc
            delay = policy.delay_for(attempt - 1)
            logger.warning("%s failed (attempt %d/%d), retrying in %.1fs: %s", step, attempt, policy.max_attempts, delay, exc)
            sleep(delay)
    raise StepFailed(step, ErrorKind.TRANSIENT, attempts=policy.max_attempts)  # pragma: no cover
