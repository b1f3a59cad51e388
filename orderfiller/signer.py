"""Caller-owned signing and chain access handle."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3

from .exceptions import ConfigurationException


class SignerContext:
    """Signs and broadcasts transactions for exactly one address.

    With a private key, transactions are signed locally and sent raw.
    Without one, ``address`` must be an account the node manages and
    transactions go through ``eth_sendTransaction``.
    """

    def __init__(
        self,
        web3: "Web3",
        private_key: Optional[str] = None,
        address: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.web3 = web3
        self.logger = logger or logging.getLogger(__name__)
        self._account = Account.from_key(private_key) if private_key else None

        if self._account is not None:
            if address and to_checksum_address(address) != self._account.address:
                raise ConfigurationException(
                    f"Address {address} does not match the private key ({self._account.address})"
                )
            self.address = self._account.address
        elif address:
            self.address = to_checksum_address(address)
        else:
            raise ConfigurationException("SignerContext needs a private key or an address")

        self._chain_id: Optional[int] = None

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        private_key: Optional[str] = None,
        address: Optional[str] = None,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None,
    ) -> "SignerContext":
        provider = Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        return cls(Web3(provider), private_key=private_key, address=address, logger=logger)

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.web3.eth.chain_id)
        return self._chain_id

    def get_code(self, address: str) -> bytes:
        return bytes(self.web3.eth.get_code(to_checksum_address(address)))

    def is_contract(self, address: str) -> bool:
        return len(self.get_code(address)) > 0

    def get_native_balance(self) -> int:
        return int(self.web3.eth.get_balance(self.address))

    def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign (if a key is held) and broadcast ``tx``; returns the tx hash."""
        tx = dict(tx)
        tx.setdefault("from", self.address)
        tx.setdefault("chainId", self.chain_id)

        if self._account is None:
            tx_hash = self.web3.eth.send_transaction(tx)
        else:
            if "nonce" not in tx:
                tx["nonce"] = self.web3.eth.get_transaction_count(self.address, "pending")
            signed_tx = self._account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)

        tx_hash_hex = _hex(tx_hash)
        self.logger.debug(f"Transaction broadcast from {self.address}: {tx_hash_hex}")
        return tx_hash_hex

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        """Block until ``tx_hash`` is mined; raises ``web3.exceptions.TimeExhausted``."""
        return dict(self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout))


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text
