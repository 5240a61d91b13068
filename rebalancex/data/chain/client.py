"""Per-chain web3 sessions and the registry that caches them."""

from __future__ import annotations

import logging
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import Web3RPCError
from web3.logs import DISCARD

from rebalancex.config import ChainConfig
from rebalancex.errors import ConfigurationError, TransactionReverted

from .abi import ERC20_ABI, MESSAGE_TRANSMITTER_ABI, TOKEN_MESSENGER_ABI

logger = logging.getLogger(__name__)


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte address to the 32-byte recipient format."""

    raw = Web3.to_bytes(hexstr=address)
    if len(raw) != 20:
        raise ValueError(f"Not a 20-byte address: {address}")
    return raw.rjust(32, b"\x00")


def message_hash(message: bytes) -> str:
    return Web3.to_hex(Web3.keccak(message))


@dataclass
class ChainSession:
    """One signing identity's connection to one chain."""

    chain: ChainConfig
    private_key: Optional[str] = None
    receipt_timeout: float = 300.0
    web3: Optional[Web3] = None

    def __post_init__(self) -> None:
        if self.web3 is None:
            self.web3 = Web3(Web3.HTTPProvider(self.chain.rpc_url))
        self.account: Optional[LocalAccount] = Account.from_key(self.private_key) if self.private_key else None
        eth = self.web3.eth
        self._usdc = eth.contract(address=Web3.to_checksum_address(self.chain.usdc_address), abi=ERC20_ABI)
        self._messenger = eth.contract(
            address=Web3.to_checksum_address(self.chain.token_messenger), abi=TOKEN_MESSENGER_ABI
        )
        self._transmitter = eth.contract(
            address=Web3.to_checksum_address(self.chain.message_transmitter), abi=MESSAGE_TRANSMITTER_ABI
        )

    @property
    def address(self) -> str:
        if self.account is None:
            raise ConfigurationError(f"No signing key configured for {self.chain.name}")
        return self.account.address

    def usdc_balance(self, owner: str) -> int:
        return int(self._usdc.functions.balanceOf(Web3.to_checksum_address(owner)).call())

    def usdc_allowance(self) -> int:
        spender = Web3.to_checksum_address(self.chain.token_messenger)
        return int(self._usdc.functions.allowance(self.address, spender).call())

    def approve_call(self, amount: int):
        return self._usdc.functions.approve(Web3.to_checksum_address(self.chain.token_messenger), amount)

    def burn_call(self, amount: int, destination_domain: int, recipient: bytes):
        token = Web3.to_checksum_address(self.chain.usdc_address)
        return self._messenger.functions.depositForBurn(amount, destination_domain, recipient, token)

    def receive_call(self, message: bytes, attestation: bytes):
        return self._transmitter.functions.receiveMessage(message, attestation)

    def estimate_gas(self, call) -> int:
        return int(call.estimate_gas({"from": self.address}))

    def sign(self, call, gas_limit: int) -> SignedTransaction:
        """Build and sign ``call`` at the next pending nonce. Nothing is broadcast."""

        eth = self.web3.eth
        tx = call.build_transaction(
            {
                "from": self.address,
                "nonce": eth.get_transaction_count(self.address, "pending"),
                "gas": gas_limit,
                "chainId": self.chain.chain_id,
            }
        )
        return self.account.sign_transaction(tx)

    def broadcast(self, signed: SignedTransaction) -> str:
        """Send a signed transaction and return its hash. "already known" counts as sent."""

        tx_hash = Web3.to_hex(signed.hash)
        try:
            self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as exc:
            if "already known" not in str(exc).lower():
                raise
            logger.info("Transaction %s already in the %s mempool", tx_hash, self.chain.name)
        logger.debug("Submitted %s on %s", tx_hash, self.chain.name)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Block until ``tx_hash`` is mined. Reverted receipts raise ``TransactionReverted``."""

        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise TransactionReverted(self.chain.name, tx_hash)
        return receipt

    def sent_messages(self, receipt) -> List[bytes]:
        """Raw payloads of ``MessageSent`` events in a receipt."""

        events = self._transmitter.events.MessageSent().process_receipt(receipt, errors=DISCARD)
        return [bytes(event["args"]["message"]) for event in events]


SessionFactory = Callable[[ChainConfig], ChainSession]


@dataclass
class SessionRegistry(AbstractContextManager):
    """Chain name -> session cache. Sessions are created on first use and reused."""

    private_key: Optional[str] = None
    receipt_timeout: float = 300.0
    factory: Optional[SessionFactory] = None
    _sessions: Dict[str, ChainSession] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _create(self, chain: ChainConfig) -> ChainSession:
        if self.factory is not None:
            return self.factory(chain)
        return ChainSession(chain, private_key=self.private_key, receipt_timeout=self.receipt_timeout)

    def get(self, chain: ChainConfig) -> ChainSession:
        with self._lock:
            session = self._sessions.get(chain.name)
            if session is None:
                logger.debug("Opening session for %s", chain.name)
                session = self._create(chain)
                self._sessions[chain.name] = session
            return session

    def __len__(self) -> int:
        return len(self._sessions)

    def close(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __enter__(self) -> "SessionRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
