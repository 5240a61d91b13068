"""Chain connectivity."""

from .client import ChainSession, SessionRegistry, address_to_bytes32, message_hash

__all__ = ["ChainSession", "SessionRegistry", "address_to_bytes32", "message_hash"]
