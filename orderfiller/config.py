"""Runtime configuration for the order filler.

Values come from command line flags, then environment variables (a ``.env``
file is loaded first), then defaults.
"""
from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from eth_utils import is_address

from .contracts import DEFAULT_SETTLEMENT_ADDRESS
from .exceptions import ConfigurationException
from .registry_client import DEFAULT_ORDER_PATH

DEFAULT_REGISTRY_URL = "https://api.1inch.dev"


@dataclass
class FillerConfig:
    rpc_url: Optional[str] = None
    chain_id: int = 1
    private_key: Optional[str] = None
    wallet_address: Optional[str] = None
    settlement_address: str = DEFAULT_SETTLEMENT_ADDRESS
    registry_url: str = DEFAULT_REGISTRY_URL
    registry_api_key: Optional[str] = None
    registry_order_path: str = DEFAULT_ORDER_PATH
    registry_timeout: int = 10
    max_retries: int = 3
    confirmation_timeout: float = 300.0
    retry_base_delay: float = 3.0
    history_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_env_file: bool = True) -> "FillerConfig":
        if environ is None:
            if load_env_file:
                load_dotenv()
            environ = os.environ
        return cls()._apply_env(environ)

    @classmethod
    def from_args(
        cls,
        args: argparse.Namespace,
        environ: Optional[Mapping[str, str]] = None,
        load_env_file: bool = True,
    ) -> "FillerConfig":
        """Environment config with any explicitly given flags on top."""
        config = cls.from_env(environ, load_env_file=load_env_file)

        overrides = {
            "rpc_url": "rpc.url",
            "chain_id": "chain.id",
            "private_key": "wallet.private_key",
            "wallet_address": "wallet.address",
            "settlement_address": "settlement.address",
            "registry_url": "registry.url",
            "registry_api_key": "registry.api_key",
            "registry_order_path": "registry.order_path",
            "registry_timeout": "registry.timeout",
            "max_retries": "fill.max_retries",
            "confirmation_timeout": "fill.confirmation_timeout",
            "retry_base_delay": "fill.retry_base_delay",
            "history_dir": "history.dir",
        }
        for attr, flag in overrides.items():
            value = getattr(args, flag, None)
            if value is not None:
                setattr(config, attr, value)

        if getattr(args, "logging.debug", False):
            config.log_level = "DEBUG"
        return config

    def _apply_env(self, environ: Mapping[str, str]) -> "FillerConfig":
        self.rpc_url = environ.get("RPC_URL", self.rpc_url)
        self.private_key = environ.get("WALLET_PRIVATE_KEY", self.private_key)
        self.wallet_address = environ.get("WALLET_ADDRESS", self.wallet_address)
        self.settlement_address = environ.get("SETTLEMENT_ADDRESS", self.settlement_address)
        self.registry_url = environ.get("ONE_INCH_BASE_URL", self.registry_url)
        self.registry_api_key = environ.get("ONE_INCH_API_KEY", self.registry_api_key)
        self.registry_order_path = environ.get("ONE_INCH_ORDER_PATH", self.registry_order_path)
        self.history_dir = environ.get("FILLER_STATE_DIR", self.history_dir)
        self.log_level = environ.get("LOG_LEVEL", self.log_level).upper()

        self.chain_id = _env_number(environ, "CHAIN_ID", int, self.chain_id)
        self.registry_timeout = _env_number(environ, "ONE_INCH_TIMEOUT", int, self.registry_timeout)
        self.max_retries = _env_number(environ, "FILL_MAX_RETRIES", int, self.max_retries)
        self.confirmation_timeout = _env_number(
            environ, "FILL_CONFIRMATION_TIMEOUT", float, self.confirmation_timeout
        )
        self.retry_base_delay = _env_number(environ, "FILL_RETRY_BASE_DELAY", float, self.retry_base_delay)
        return self

    def validate(self, require_signer: bool = True, require_rpc: bool = True) -> None:
        """Validate configuration parameters.

        Raises:
            ConfigurationException: If configuration is invalid
        """
        errors = []
        if require_rpc and not self.rpc_url:
            errors.append("rpc.url (RPC_URL) is required")
        if require_signer and not (self.private_key or self.wallet_address):
            errors.append("wallet.private_key (WALLET_PRIVATE_KEY) or wallet.address is required")
        if self.private_key and not _is_private_key(self.private_key):
            errors.append("wallet.private_key must be 32 bytes of hex")
        if self.wallet_address and not is_address(self.wallet_address):
            errors.append(f"wallet.address is not a valid address: {self.wallet_address}")
        if not is_address(self.settlement_address or ""):
            errors.append(f"settlement.address is not a valid address: {self.settlement_address}")
        if not self.registry_url:
            errors.append("registry.url (ONE_INCH_BASE_URL) is required")
        if self.chain_id <= 0:
            errors.append("chain.id must be > 0")
        if self.registry_timeout <= 0:
            errors.append("registry.timeout must be > 0")
        if self.max_retries < 1:
            errors.append("fill.max_retries must be >= 1")
        if self.confirmation_timeout <= 0:
            errors.append("fill.confirmation_timeout must be > 0")
        if self.retry_base_delay < 0:
            errors.append("fill.retry_base_delay must be >= 0")

        if errors:
            raise ConfigurationException("Filler configuration invalid: " + "; ".join(errors))

    def redacted(self) -> dict:
        """Config as a dict with secrets masked, for logging."""
        data = dict(self.__dict__)
        for key in ("private_key", "registry_api_key"):
            if data.get(key):
                data[key] = "***"
        return data


def add_config_args(parser: argparse.ArgumentParser) -> None:
    """Register the shared dotted configuration flags on ``parser``."""
    parser.add_argument("--rpc.url", type=str, default=None, help="Ethereum JSON-RPC endpoint (RPC_URL)")
    parser.add_argument("--chain.id", type=int, default=None, help="Chain id (CHAIN_ID, default 1)")
    parser.add_argument("--wallet.private_key", type=str, default=None, help="Taker private key (WALLET_PRIVATE_KEY)")
    parser.add_argument("--wallet.address", type=str, default=None, help="Node-managed taker address (no local signing)")
    parser.add_argument("--settlement.address", type=str, default=None, help="Limit order settlement contract")
    parser.add_argument("--registry.url", type=str, default=None, help="Order registry base URL (ONE_INCH_BASE_URL)")
    parser.add_argument("--registry.api_key", type=str, default=None, help="Order registry API key (ONE_INCH_API_KEY)")
    parser.add_argument("--registry.order_path", type=str, default=None, help="Order lookup path template")
    parser.add_argument("--registry.timeout", type=int, default=None, help="Registry request timeout (seconds)")
    parser.add_argument("--fill.max_retries", type=int, default=None, help="Fill attempts before giving up (FILL_MAX_RETRIES)")
    parser.add_argument("--fill.confirmation_timeout", type=float, default=None, help="Receipt wait per attempt (seconds)")
    parser.add_argument("--fill.retry_base_delay", type=float, default=None, help="Linear retry base delay (seconds)")
    parser.add_argument("--history.dir", type=str, default=None, help="Directory for the fill history file (FILLER_STATE_DIR)")
    parser.add_argument("--logging.debug", action="store_true", help="Enable debug logging")


def _env_number(environ: Mapping[str, str], name: str, cast: Any, default: Any) -> Any:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationException(f"{name} must be a number, got {raw!r}") from e


def _is_private_key(value: str) -> bool:
    key = value[2:] if value.startswith("0x") else value
    if len(key) != 64:
        return False
    try:
        bytes.fromhex(key)
    except ValueError:
        return False
    return True
