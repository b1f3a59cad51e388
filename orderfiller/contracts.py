"""Settlement and ERC20 contract bindings used by the fill executor."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_bytes, to_checksum_address

from .order import LimitOrder
from .traits import UINT256_MAX

# Router v6 (Limit Order Protocol v4), same address on most EVM chains
DEFAULT_SETTLEMENT_ADDRESS = "0x111111125421cA6dc452d289314280a0f8842A65"

# Sentinel used by 1inch APIs for the chain's native currency
NATIVE_CURRENCY = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

ORDER_FILLED_TOPIC = keccak(text="OrderFilled(bytes32,uint256)")

_ORDER_COMPONENTS = [
    {"internalType": "uint256", "name": "salt", "type": "uint256"},
    {"internalType": "Address", "name": "maker", "type": "uint256"},
    {"internalType": "Address", "name": "receiver", "type": "uint256"},
    {"internalType": "Address", "name": "makerAsset", "type": "uint256"},
    {"internalType": "Address", "name": "takerAsset", "type": "uint256"},
    {"internalType": "uint256", "name": "makingAmount", "type": "uint256"},
    {"internalType": "uint256", "name": "takingAmount", "type": "uint256"},
    {"internalType": "MakerTraits", "name": "makerTraits", "type": "uint256"},
]

_ORDER_INPUT = {
    "components": _ORDER_COMPONENTS,
    "internalType": "struct IOrderMixin.Order",
    "name": "order",
    "type": "tuple",
}

_FILL_OUTPUTS = [
    {"name": "makingAmount", "type": "uint256"},
    {"name": "takingAmount", "type": "uint256"},
    {"name": "orderHash", "type": "bytes32"},
]

# Settlement contract ABI - the fill entry points and both order invalidators
SETTLEMENT_ABI = [
    {
        "inputs": [
            _ORDER_INPUT,
            {"name": "r", "type": "bytes32"},
            {"name": "vs", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
            {"internalType": "TakerTraits", "name": "takerTraits", "type": "uint256"},
        ],
        "name": "fillOrder",
        "outputs": _FILL_OUTPUTS,
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            _ORDER_INPUT,
            {"name": "r", "type": "bytes32"},
            {"name": "vs", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
            {"internalType": "TakerTraits", "name": "takerTraits", "type": "uint256"},
            {"name": "args", "type": "bytes"},
        ],
        "name": "fillOrderArgs",
        "outputs": _FILL_OUTPUTS,
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            _ORDER_INPUT,
            {"name": "signature", "type": "bytes"},
            {"name": "amount", "type": "uint256"},
            {"internalType": "TakerTraits", "name": "takerTraits", "type": "uint256"},
        ],
        "name": "fillContractOrder",
        "outputs": _FILL_OUTPUTS,
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            _ORDER_INPUT,
            {"name": "signature", "type": "bytes"},
            {"name": "amount", "type": "uint256"},
            {"internalType": "TakerTraits", "name": "takerTraits", "type": "uint256"},
            {"name": "args", "type": "bytes"},
        ],
        "name": "fillContractOrderArgs",
        "outputs": _FILL_OUTPUTS,
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "maker", "type": "address"},
            {"name": "orderHash", "type": "bytes32"}
        ],
        "name": "rawRemainingInvalidatorForOrder",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "maker", "type": "address"},
            {"name": "slot", "type": "uint256"}
        ],
        "name": "bitInvalidatorForOrder",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": False, "name": "remainingAmount", "type": "uint256"},
        ],
        "name": "OrderFilled",
        "type": "event"
    },
]

# ERC20 ABI for balance checks and approvals
ERC20_ABI = [
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {"name": "decimals", "outputs": [{"type": "uint8"}], "inputs": [], "stateMutability": "view", "type": "function"},
    {"name": "symbol", "outputs": [{"type": "string"}], "inputs": [], "stateMutability": "view", "type": "function"},
]


def is_native_currency(address: str) -> bool:
    return address.lower() == NATIVE_CURRENCY.lower()


def order_call_tuple(order: LimitOrder) -> tuple:
    """The order struct as the router expects it (addresses packed into uint256)."""
    return (
        order.salt,
        int(order.maker, 16),
        int(order.receiver, 16),
        int(order.maker_asset, 16),
        int(order.taker_asset, 16),
        order.making_amount,
        order.taking_amount,
        order.maker_traits,
    )


@dataclass
class EoaMaker:
    """Order signed by an externally owned account: compact ``(r, vs)`` signature."""
    r: bytes
    vs: bytes


@dataclass
class ContractMaker:
    """Order signed by a contract wallet: whole signature checked via ERC-1271."""
    signature: bytes


MakerKind = Union[EoaMaker, ContractMaker]


@dataclass
class OrderFilledEvent:
    order_hash: str
    remaining_amount: int


class SettlementContract:
    def __init__(self, web3: Any, address: str, logger: Optional[logging.Logger] = None):
        self.address = to_checksum_address(address)
        self.logger = logger or logging.getLogger(__name__)
        self.contract = web3.eth.contract(address=self.address, abi=SETTLEMENT_ABI)

    def raw_remaining_invalidator(self, maker: str, order_hash: str) -> int:
        return int(
            self.contract.functions.rawRemainingInvalidatorForOrder(
                to_checksum_address(maker),
                to_bytes(hexstr=order_hash),
            ).call()
        )

    def bit_invalidator(self, maker: str, slot: int) -> int:
        return int(
            self.contract.functions.bitInvalidatorForOrder(to_checksum_address(maker), slot).call()
        )

    def remaining_making_amount(self, order: LimitOrder, order_hash: str) -> int:
        """Remaining maker-asset amount of an order.

        Orders that forbid partial or multiple fills are tracked by a nonce
        bit: once the bit is set the whole order is gone. Other orders use
        the raw remaining invalidator, which is zero for an order nobody
        touched yet and the bitwise complement of the remaining amount
        afterwards, so a fully filled or cancelled order reads as zero.
        """
        traits = order.traits
        if traits.use_bit_invalidator:
            slot, mask = traits.invalidator_slot()
            if self.bit_invalidator(order.maker, slot) & mask:
                return 0
            return order.making_amount

        raw = self.raw_remaining_invalidator(order.maker, order_hash)
        if raw == 0:
            return order.making_amount
        return UINT256_MAX ^ raw

    def fill_function(
        self,
        maker_kind: MakerKind,
        order: LimitOrder,
        amount: int,
        taker_traits: int,
        args: bytes = b"",
    ) -> Any:
        """Bind the fill entry point matching the maker kind."""
        order_tuple = order_call_tuple(order)
        if isinstance(maker_kind, ContractMaker):
            if args:
                return self.contract.functions.fillContractOrderArgs(
                    order_tuple, maker_kind.signature, amount, taker_traits, args
                )
            return self.contract.functions.fillContractOrder(
                order_tuple, maker_kind.signature, amount, taker_traits
            )
        if isinstance(maker_kind, EoaMaker):
            if args:
                return self.contract.functions.fillOrderArgs(
                    order_tuple, maker_kind.r, maker_kind.vs, amount, taker_traits, args
                )
            return self.contract.functions.fillOrder(
                order_tuple, maker_kind.r, maker_kind.vs, amount, taker_traits
            )
        raise TypeError(f"Unknown maker kind: {type(maker_kind).__name__}")

    @staticmethod
    def entry_point_name(maker_kind: MakerKind, args: bytes = b"") -> str:
        base = "fillContractOrder" if isinstance(maker_kind, ContractMaker) else "fillOrder"
        return base + "Args" if args else base

    def parse_order_filled(self, receipt: Dict[str, Any], order_hash: str) -> Optional[OrderFilledEvent]:
        """Find the ``OrderFilled`` event for ``order_hash`` in a receipt."""
        wanted = order_hash.lower()
        logs: List[Any] = receipt.get("logs") or []
        for log in logs:
            try:
                address = log.get("address")
                if address and to_checksum_address(address) != self.address:
                    continue
                topics = log.get("topics") or []
                if not topics or _as_bytes(topics[0]) != ORDER_FILLED_TOPIC:
                    continue
                decoded_hash, remaining = abi_decode(["bytes32", "uint256"], _as_bytes(log.get("data")))
            except Exception as e:
                self.logger.warning(f"Could not decode settlement log: {e}")
                continue
            event_hash = "0x" + decoded_hash.hex()
            if event_hash == wanted:
                return OrderFilledEvent(order_hash=event_hash, remaining_amount=int(remaining))
        return None


class Erc20Token:
    def __init__(self, web3: Any, address: str):
        self.address = to_checksum_address(address)
        self.contract = web3.eth.contract(address=self.address, abi=ERC20_ABI)

    def balance_of(self, owner: str) -> int:
        return int(self.contract.functions.balanceOf(to_checksum_address(owner)).call())

    def allowance(self, owner: str, spender: str) -> int:
        return int(
            self.contract.functions.allowance(
                to_checksum_address(owner), to_checksum_address(spender)
            ).call()
        )

    def approve_function(self, spender: str, amount: int) -> Any:
        return self.contract.functions.approve(to_checksum_address(spender), amount)

    def symbol(self) -> str:
        # Some tokens (e.g. MKR) do not return a string symbol
        try:
            value = self.contract.functions.symbol().call()
            return str(value) if value else "UNKNOWN"
        except Exception:
            return "UNKNOWN"

    def decimals(self) -> int:
        try:
            return int(self.contract.functions.decimals().call())
        except Exception:
            return 18


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return to_bytes(hexstr=str(value))
