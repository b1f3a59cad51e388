"""Taker-side filler for signed 1inch limit orders."""

from .version import __version__

__all__ = [
    "cli",
    "config",
    "contracts",
    "exceptions",
    "executor",
    "history_store",
    "order",
    "registry_client",
    "retry",
    "signature",
    "signer",
    "traits",
]
