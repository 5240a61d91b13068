"""Cross-chain transfer pipeline: approve, burn, await attestation, mint."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from web3 import Web3

from rebalancex.config import ChainConfig
from rebalancex.data.chain import ChainSession, SessionRegistry, address_to_bytes32, message_hash
from rebalancex.errors import AttestationTimeout, ErrorKind, StepFailed
from rebalancex.portfolio import RebalanceAction, format_usdc

from .attestation import Attestation, AttestationPoller
from .gas import GasPolicy
from .retry import RetryPolicy, call_with_retry, classify_error

logger = logging.getLogger(__name__)


class TransferStage(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    BURNING = "burning"
    AWAITING_ATTESTATION = "awaiting_attestation"
    MINTING = "minting"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    success: bool
    stage: TransferStage
    burn_tx: Optional[str] = None
    mint_tx: Optional[str] = None
    message_id: Optional[str] = None
    approve_tx: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    # Stage the action was in when it failed.
    failed_stage: Optional[TransferStage] = None
    dry_run: bool = False


@dataclass(frozen=True)
class BurnReceipt:
    tx_hash: str
    message_id: str
    message: Optional[str]


_STAGE_TX_FIELDS = {
    TransferStage.APPROVING: "approve_tx",
    TransferStage.BURNING: "burn_tx",
    TransferStage.MINTING: "mint_tx",
}


class TransferPipeline:
    def __init__(
        self,
        registry: SessionRegistry,
        poller: AttestationPoller,
        retry: RetryPolicy = RetryPolicy(),
        gas: GasPolicy = GasPolicy(),
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.poller = poller
        self.retry = retry
        self.gas = gas
        self.dry_run = dry_run
        self.sleep = sleep

    def execute(self, action: RebalanceAction) -> TransferOutcome:
        """Run one action to completion. Failures come back as outcomes, never as exceptions."""

        logger.info("Executing transfer: %s", action.describe())
        if self.dry_run:
            logger.info("[DRY RUN] Would transfer %s, skipping", action.describe())
            return TransferOutcome(success=True, stage=TransferStage.COMPLETE, dry_run=True)

        progress = TransferOutcome(success=False, stage=TransferStage.IDLE)
        try:
            source = self.registry.get(action.source)
            destination = self.registry.get(action.destination)

            progress = replace(progress, stage=TransferStage.APPROVING)
            progress = replace(progress, approve_tx=self._approve(source, action.amount))

            progress = replace(progress, stage=TransferStage.BURNING)
            burn = self._burn(source, destination, action)
            progress = replace(progress, burn_tx=burn.tx_hash, message_id=burn.message_id)

            progress = replace(progress, stage=TransferStage.AWAITING_ATTESTATION)
            attestation = self.poller.wait(burn.message_id, burn.message)

            progress = replace(progress, stage=TransferStage.MINTING)
            mint_tx = self._mint(destination, attestation)
        except StepFailed as exc:
            if exc.tx_hash is not None:
                field_name = _STAGE_TX_FIELDS.get(progress.stage)
                if field_name is not None:
                    progress = replace(progress, **{field_name: exc.tx_hash})
                logger.error("Transaction %s was broadcast but not confirmed; check it before retrying", exc.tx_hash)
            return self._failed(action, progress, exc.kind, exc)
        except AttestationTimeout as exc:
            logger.error(
                "Burn %s on %s committed but no attestation arrived; resume the mint on %s with message id %s",
                progress.burn_tx,
                action.source.name,
                action.destination.name,
                exc.message_id,
            )
            return self._failed(action, progress, ErrorKind.ATTESTATION_TIMEOUT, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error during %s", progress.stage.value)
            return self._failed(action, progress, classify_error(exc), exc)

        logger.info(
            "Transfer complete: %s (burn %s, mint %s)", action.describe(), progress.burn_tx, mint_tx
        )
        return replace(progress, success=True, stage=TransferStage.COMPLETE, mint_tx=mint_tx)

    def _failed(
        self, action: RebalanceAction, progress: TransferOutcome, kind: ErrorKind, exc: BaseException
    ) -> TransferOutcome:
        logger.error(
            "Transfer failed during %s: %s (%s, amount %s USDC, %s -> %s)",
            progress.stage.value,
            exc,
            kind.value,
            format_usdc(action.amount),
            action.source.name,
            action.destination.name,
        )
        return replace(
            progress,
            success=False,
            stage=TransferStage.FAILED,
            failed_stage=progress.stage,
            error=str(exc),
            error_kind=kind,
        )

    def _submit(self, session: ChainSession, call, step: str) -> Tuple[str, Dict[str, Any]]:
        """Sign once, broadcast that payload, then poll its receipt by hash.

        A transaction is never re-signed after a broadcast attempt, so a retry
        can only resend the same nonce.
        """

        def _sign():
            return session.sign(call, self.gas.limit(session.estimate_gas(call)))

        signed = call_with_retry(_sign, self.retry, step, self.sleep)
        tx_hash = call_with_retry(lambda: session.broadcast(signed), self.retry, step, self.sleep)
        try:
            receipt = call_with_retry(
                lambda: session.wait_for_receipt(tx_hash), self.retry, f"{step} receipt", self.sleep
            )
        except StepFailed as exc:
            raise StepFailed(exc.step, exc.kind, exc.cause, exc.attempts, tx_hash=tx_hash) from exc
        return tx_hash, receipt

    def _approve(self, session: ChainSession, amount: int) -> Optional[str]:
        name = session.chain.name
        allowance = call_with_retry(session.usdc_allowance, self.retry, f"allowance on {name}", self.sleep)
        if allowance >= amount:
            logger.info("Sufficient allowance on %s (%s USDC)", name, format_usdc(allowance))
            return None
        logger.info("Approving %s USDC on %s", format_usdc(amount), name)
        tx_hash, _ = self._submit(session, session.approve_call(amount), f"approve on {name}")
        logger.info("Transaction: APPROVE chain=%s tx=%s amount=%d", name, tx_hash, amount)
        return tx_hash

    def _burn(self, source: ChainSession, destination: ChainSession, action: RebalanceAction) -> BurnReceipt:
        name = source.chain.name
        recipient = address_to_bytes32(destination.address)
        call = source.burn_call(action.amount, action.destination.domain, recipient)
        logger.info("Burning %s USDC on %s", format_usdc(action.amount), name)
        tx_hash, receipt = self._submit(source, call, f"burn on {name}")
        logger.info(
            "Transaction: BURN chain=%s tx=%s amount=%s destination=%s",
            name,
            tx_hash,
            format_usdc(action.amount),
            action.destination.name,
        )

        messages = source.sent_messages(receipt)
        if not messages:
            logger.warning("No MessageSent event in burn %s on %s; using the tx hash as attestation key", tx_hash, name)
            return BurnReceipt(tx_hash=tx_hash, message_id=tx_hash, message=None)
        payload = messages[0]
        return BurnReceipt(tx_hash=tx_hash, message_id=message_hash(payload), message=Web3.to_hex(payload))

    def _mint(self, destination: ChainSession, attestation: Attestation) -> str:
        name = destination.chain.name
        call = destination.receive_call(
            Web3.to_bytes(hexstr=attestation.message), Web3.to_bytes(hexstr=attestation.attestation)
        )
        logger.info("Receiving message on %s", name)
        tx_hash, _ = self._submit(destination, call, f"mint on {name}")
        logger.info("Transaction: MINT chain=%s tx=%s", name, tx_hash)
        return tx_hash

    def resume_mint(self, chain: ChainConfig, attestation: Attestation) -> str:
        """Submit the mint for an already burned message, e.g. after an attestation timeout."""

        return self._mint(self.registry.get(chain), attestation)
