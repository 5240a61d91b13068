"""Agent loop around the rebalance cycle."""

from __future__ import annotations

import logging
import signal
import threading
from typing import Optional

from .cycle import CycleResult, RebalanceCycle

logger = logging.getLogger(__name__)


class RebalanceLoop:
    """Runs cycles on an interval. Stop requests are honored only between cycles."""

    def __init__(
        self,
        cycle: RebalanceCycle,
        interval_seconds: float,
        once: bool = False,
        stop_event: Optional[threading.Event] = None,
    ):
        self.cycle = cycle
        self.interval_seconds = interval_seconds
        self.once = once
        self.stop_event = stop_event or threading.Event()
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None

    def request_stop(self, signum=None, frame=None) -> None:
        if not self.stop_event.is_set():
            logger.info("Shutting down after the current cycle")
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

    def run(self) -> Optional[CycleResult]:
        while not self.stop_event.is_set():
            self.cycles_run += 1
            try:
                self.last_result = self.cycle.run()
            except Exception:  # noqa: BLE001
                logger.exception("Rebalance cycle %d failed", self.cycles_run)
                self.last_result = None

            if self.once:
                logger.info("Single run complete")
                break
            logger.info("Next check in %g seconds", self.interval_seconds)
            self.stop_event.wait(self.interval_seconds)
        return self.last_result
