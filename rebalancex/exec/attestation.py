"""Attestation service client and adaptive polling."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from rebalancex.config import AttestationConfig
from rebalancex.errors import AttestationTimeout

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_PENDING = "pending"


@dataclass(frozen=True)
class AttestationResponse:
    status: str
    attestation: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Attestation:
    message: str
    attestation: str
    attempts: int = 1


class AttestationClient:
    """HTTP client for ``GET {base_url}/{message_id}``. Unknown ids (404) read as pending."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: AttestationConfig) -> "AttestationClient":
        return cls(config.url, timeout=config.request_timeout)

    def get(self, message_id: str) -> AttestationResponse:
        response = self.session.get(f"{self.base_url}/{message_id}", timeout=self.timeout)
        if response.status_code == 404:
            return AttestationResponse(status=STATUS_PENDING)
        response.raise_for_status()
        data = response.json()
        return AttestationResponse(
            status=str(data.get("status", STATUS_PENDING)),
            attestation=data.get("attestation"),
            message=data.get("message"),
        )


@dataclass(frozen=True)
class PollSchedule:
    max_attempts: int = 120
    fast_attempts: int = 12
    fast_interval: float = 5.0
    interval: float = 10.0

    @classmethod
    def from_config(cls, config: AttestationConfig) -> "PollSchedule":
        return cls(
            max_attempts=config.max_attempts,
            fast_attempts=config.fast_attempts,
            fast_interval=config.fast_interval,
            interval=config.interval,
        )

    def interval_for(self, attempt: int) -> float:
        """Wait after 1-based ``attempt``."""

        return self.fast_interval if attempt <= self.fast_attempts else self.interval

    def total_wait(self) -> float:
        return sum(self.interval_for(a) for a in range(1, self.max_attempts + 1))


@dataclass
class PollState:
    message_id: str
    attempt: int = 0
    elapsed: float = 0.0
    last_status: Optional[str] = None
    last_error: Optional[str] = None


class AttestationPoller:
    def __init__(
        self,
        fetch: Callable[[str], AttestationResponse],
        schedule: PollSchedule = PollSchedule(),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetch = fetch
        self.schedule = schedule
        self.sleep = sleep
        self.last_state: Optional[PollState] = None

    def wait(self, message_id: str, message: Optional[str] = None) -> Attestation:
        """Poll until complete. ``message`` is the locally known payload, used if the service omits it."""

        state = PollState(message_id=message_id)
        self.last_state = state
        logger.info("Waiting for attestation (message id %s)", message_id)
        while state.attempt < self.schedule.max_attempts:
            state.attempt += 1
            try:
                response = self.fetch(message_id)
            except (requests.RequestException, ValueError) as exc:
                state.last_error = str(exc)
                logger.warning("Attestation API error (attempt %d): %s", state.attempt, exc)
            else:
                state.last_status = response.status
                payload = response.message or message
                if response.status == STATUS_COMPLETE and response.attestation and payload:
                    logger.info("Attestation received after %d attempt(s)", state.attempt)
                    return Attestation(message=payload, attestation=response.attestation, attempts=state.attempt)
                logger.info(
                    "Attestation %s (attempt %d/%d)", response.status, state.attempt, self.schedule.max_attempts
                )

            if state.attempt < self.schedule.max_attempts:
                delay = self.schedule.interval_for(state.attempt)
                self.sleep(delay)
                state.elapsed += delay

        raise AttestationTimeout(message_id, state.attempt, state.elapsed)
