"""Configuration models and loader for the rebalancer."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError, field_validator, model_validator

from rebalancex.errors import ConfigurationError


class ChainConfig(BaseModel):
    """Static description of one chain. Loaded once, never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str
    chain_id: int
    rpc_url: str
    usdc_address: str
    token_messenger: str
    message_transmitter: str
    domain: int = Field(ge=0)


def _env(key: str, fallback: str) -> str:
    return os.environ.get(key) or fallback


def default_chains() -> Dict[str, ChainConfig]:
    """Testnet deployments, overridable per field through environment variables."""

    return {
        "sepolia": ChainConfig(
            name="sepolia",
            chain_id=11155111,
            rpc_url=_env("SEPOLIA_RPC_URL", "https://ethereum-sepolia-rpc.publicnode.com"),
            usdc_address=_env("SEPOLIA_USDC", "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"),
            token_messenger=_env("SEPOLIA_TOKEN_MESSENGER", "0x9f3B8679c73C2Fef8b59B4f3444d4e156fb70AA5"),
            message_transmitter=_env("SEPOLIA_MESSAGE_TRANSMITTER", "0x7865fAfC2db2093669d92c0F33AeEF291086BEFD"),
            domain=0,
        ),
        "polygonAmoy": ChainConfig(
            name="polygonAmoy",
            chain_id=80002,
            rpc_url=_env("POLYGON_AMOY_RPC_URL", "https://rpc-amoy.polygon.technology"),
            usdc_address=_env("POLYGON_AMOY_USDC", "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582"),
            token_messenger=_env("POLYGON_AMOY_TOKEN_MESSENGER", "0x9f3B8679c73C2Fef8b59B4f3444d4e156fb70AA5"),
            message_transmitter=_env(
                "POLYGON_AMOY_MESSAGE_TRANSMITTER", "0x7865fAfC2db2093669d92c0F33AeEF291086BEFD"
            ),
            domain=7,
        ),
        "arbitrumSepolia": ChainConfig(
            name="arbitrumSepolia",
            chain_id=421614,
            rpc_url=_env("ARBITRUM_SEPOLIA_RPC_URL", "https://sepolia-rollup.arbitrum.io/rpc"),
            usdc_address=_env("ARBITRUM_SEPOLIA_USDC", "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"),
            token_messenger=_env(
                "ARBITRUM_SEPOLIA_TOKEN_MESSENGER", "0x9f3B8679c73C2Fef8b59B4f3444d4e156fb70AA5"
            ),
            message_transmitter=_env(
                "ARBITRUM_SEPOLIA_MESSAGE_TRANSMITTER", "0xaCF1ceeF35caAc005e15888dDb8A3515C41B4872"
            ),
            domain=3,
        ),
    }


DEFAULT_CHAIN_NAMES = ["sepolia", "polygonAmoy", "arbitrumSepolia"]


class WalletConfig(BaseModel):
    private_key_env: str = "PRIVATE_KEY"
    # Used for balance reads when no key is available (e.g. static inspection).
    address: Optional[str] = None


class RebalanceConfig(BaseModel):
    target: str = "40,30,30"
    chains: List[str] = Field(default_factory=lambda: list(DEFAULT_CHAIN_NAMES))
    threshold_pct: float = Field(5.0, ge=0.0, le=100.0)
    interval_seconds: PositiveFloat = 60.0
    dry_run: bool = False
    once: bool = False

    @field_validator("chains")
    @classmethod
    def chains_not_empty(cls, chains: List[str]) -> List[str]:
        if not chains:
            raise ValueError("at least one chain is required")
        if len(set(chains)) != len(chains):
            raise ValueError("chain list contains duplicates")
        return chains


class BalanceProvider(str, Enum):
    RPC = "rpc"
    STATIC = "static"


class BalanceFailurePolicy(str, Enum):
    ABORT = "abort"
    ZERO = "zero"


class BalanceConfig(BaseModel):
    provider: BalanceProvider = BalanceProvider.RPC
    static: Optional[Dict[str, int]] = None
    on_read_failure: BalanceFailurePolicy = BalanceFailurePolicy.ABORT
    max_workers: PositiveInt = 4

    @model_validator(mode="after")
    def _validate_payload(self) -> "BalanceConfig":
        if self.provider == BalanceProvider.STATIC and self.static is None:
            raise ValueError("static provider requires static balances")
        return self


class RetryConfig(BaseModel):
    max_attempts: PositiveInt = 3
    initial_delay: float = Field(1.0, ge=0.0)
    multiplier: float = Field(2.0, ge=1.0)
    max_delay: float = Field(30.0, ge=0.0)


class GasConfig(BaseModel):
    buffer_pct: int = Field(20, ge=0)
    max_gas_limit: PositiveInt = 500_000


class TransactionConfig(BaseModel):
    receipt_timeout: PositiveFloat = 300.0


class AttestationConfig(BaseModel):
    url: str = Field(
        default_factory=lambda: _env("CIRCLE_ATTESTATION_URL", "https://iris-api-sandbox.circle.com/attestations")
    )
    max_attempts: PositiveInt = 120
    fast_attempts: int = Field(12, ge=0)
    fast_interval: float = Field(5.0, ge=0.0)
    interval: float = Field(10.0, ge=0.0)
    request_timeout: PositiveFloat = 10.0

    @model_validator(mode="after")
    def _fast_within_ceiling(self) -> "AttestationConfig":
        if self.fast_attempts > self.max_attempts:
            raise ValueError("fast_attempts must not exceed max_attempts")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None


class AppConfig(BaseModel):
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    chains: Dict[str, ChainConfig] = Field(default_factory=default_chains)
    rebalance: RebalanceConfig = Field(default_factory=RebalanceConfig)
    balances: BalanceConfig = Field(default_factory=BalanceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    gas: GasConfig = Field(default_factory=GasConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    attestation: AttestationConfig = Field(default_factory=AttestationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("chains", mode="before")
    @classmethod
    def _name_chains_from_keys(cls, chains: Any) -> Any:
        if isinstance(chains, dict):
            named = {}
            for key, value in chains.items():
                if isinstance(value, dict):
                    value = {"name": key, **value}
                named[key] = value
            return named
        return chains


def load_config(source: Union[str, Path, Dict[str, Any]]) -> AppConfig:
    """Load and validate the application config from a path or raw mapping."""

    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            payload = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Malformed config file {path}: {exc}") from exc
    elif isinstance(source, dict):
        payload = source
    else:
        raise TypeError("config source must be a path or mapping")

    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def resolve_chains(config: AppConfig, names: Optional[List[str]] = None) -> List[ChainConfig]:
    """Map chain names to their configs, preserving order."""

    names = names if names is not None else config.rebalance.chains
    resolved = []
    for name in names:
        chain = config.chains.get(name)
        if chain is None:
            known = ", ".join(sorted(config.chains))
            raise ConfigurationError(f"Unknown chain: {name} (known chains: {known})")
        resolved.append(chain)
    return resolved


def load_private_key(config: AppConfig) -> str:
    key = os.environ.get(config.wallet.private_key_env)
    if not key:
        raise ConfigurationError(f"Missing required environment variable: {config.wallet.private_key_env}")
    return key


__all__ = [
    "AppConfig",
    "AttestationConfig",
    "BalanceConfig",
    "BalanceFailurePolicy",
    "BalanceProvider",
    "ChainConfig",
    "DEFAULT_CHAIN_NAMES",
    "GasConfig",
    "LoggingConfig",
    "RebalanceConfig",
    "RetryConfig",
    "TransactionConfig",
    "WalletConfig",
    "default_chains",
    "load_config",
    "load_private_key",
    "resolve_chains",
]
