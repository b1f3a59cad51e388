"""Limit order model, registry payload parsing and EIP-712 order hashing.

The registry returns orders in the 1inch order-book shape::

    {"orderHash": "0x..", "signature": "0x..", "data": {"salt": "..", "maker": "0x..", ...}}

Older proxies return the same fields flat or in snake_case. Everything is
normalised into a ``LimitOrder`` whose field order matches the on-chain
``Order`` struct.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from eth_abi import encode as abi_encode
from eth_utils import is_address, keccak, to_bytes, to_checksum_address

from .exceptions import MalformedOrderData
from .traits import UINT256_MAX, MakerTraits

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Field name -> accepted payload keys, in lookup order
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "salt": ("salt",),
    "maker": ("maker",),
    "receiver": ("receiver",),
    "maker_asset": ("makerAsset", "maker_asset"),
    "taker_asset": ("takerAsset", "taker_asset"),
    "making_amount": ("makingAmount", "making_amount"),
    "taking_amount": ("takingAmount", "taking_amount"),
    "maker_traits": ("makerTraits", "maker_traits"),
}


@dataclass(frozen=True)
class LimitOrder:
    """On-chain representation of a signed limit order."""
    salt: int
    maker: str
    receiver: str
    maker_asset: str
    taker_asset: str
    making_amount: int
    taking_amount: int
    maker_traits: int

    def as_tuple(self) -> Tuple[int, str, str, str, str, int, int, int]:
        return (
            self.salt,
            self.maker,
            self.receiver,
            self.maker_asset,
            self.taker_asset,
            self.making_amount,
            self.taking_amount,
            self.maker_traits,
        )

    @property
    def traits(self) -> MakerTraits:
        return MakerTraits.from_int(self.maker_traits)

    def taking_for_making(self, making: int) -> int:
        """Taker-asset amount needed to receive ``making`` (rounded up)."""
        if self.making_amount == 0:
            return 0
        return -(-making * self.taking_amount // self.making_amount)

    def making_for_taking(self, taking: int) -> int:
        """Maker-asset amount paid out for ``taking`` (rounded down)."""
        if self.taking_amount == 0:
            return 0
        return taking * self.making_amount // self.taking_amount


@dataclass
class OrderRecord:
    order_hash: str
    order: LimitOrder
    signature: Optional[str] = None
    extension: bytes = b""
    raw: Dict[str, Any] = field(default_factory=dict)


def _lookup(sources, aliases: Tuple[str, ...]) -> Any:
    for source in sources:
        for key in aliases:
            value = source.get(key)
            if value is not None and value != "":
                return value
    return None


def _parse_uint(name: str, value: Any) -> int:
    if value is None:
        raise MalformedOrderData(f"Missing order field: {name}")
    try:
        if isinstance(value, bool):
            raise ValueError("boolean is not an amount")
        if isinstance(value, int):
            parsed = value
        elif isinstance(value, str) and value.lower().startswith("0x"):
            parsed = int(value, 16) if len(value) > 2 else 0
        else:
            parsed = int(str(value), 10)
    except (TypeError, ValueError) as e:
        raise MalformedOrderData(f"Order field {name} is not numeric: {value!r}") from e
    if parsed < 0 or parsed > UINT256_MAX:
        raise MalformedOrderData(f"Order field {name} out of uint256 range: {value!r}")
    return parsed


def _parse_address(name: str, value: Any) -> str:
    if value is None:
        raise MalformedOrderData(f"Missing order field: {name}")
    if not isinstance(value, str) or not is_address(value):
        raise MalformedOrderData(f"Invalid address in field {name}: {value!r}")
    return to_checksum_address(value)


def _parse_extension(value: Any) -> bytes:
    if value is None or value in ("", "0x"):
        return b""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise MalformedOrderData(f"Invalid order extension: {value!r}")
    try:
        return to_bytes(hexstr=value)
    except (ValueError, TypeError) as e:
        raise MalformedOrderData(f"Invalid order extension: {e}") from e


def parse_order_record(payload: Dict[str, Any], order_hash: Optional[str] = None) -> OrderRecord:
    """Rebuild an ``OrderRecord`` from a registry response."""
    if not isinstance(payload, dict):
        raise MalformedOrderData(f"Order payload is not an object: {type(payload).__name__}")

    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    # Nested data wins; top-level fields cover flat payloads
    sources = (data, payload)

    receiver = _lookup(sources, _FIELD_ALIASES["receiver"])
    order = LimitOrder(
        salt=_parse_uint("salt", _lookup(sources, _FIELD_ALIASES["salt"])),
        maker=_parse_address("maker", _lookup(sources, _FIELD_ALIASES["maker"])),
        receiver=_parse_address("receiver", receiver) if receiver is not None else ZERO_ADDRESS,
        maker_asset=_parse_address("makerAsset", _lookup(sources, _FIELD_ALIASES["maker_asset"])),
        taker_asset=_parse_address("takerAsset", _lookup(sources, _FIELD_ALIASES["taker_asset"])),
        making_amount=_parse_uint("makingAmount", _lookup(sources, _FIELD_ALIASES["making_amount"])),
        taking_amount=_parse_uint("takingAmount", _lookup(sources, _FIELD_ALIASES["taking_amount"])),
        maker_traits=_parse_uint("makerTraits", _lookup(sources, _FIELD_ALIASES["maker_traits"]) or 0),
    )

    if order.making_amount == 0 or order.taking_amount == 0:
        raise MalformedOrderData(
            f"Order amounts must be positive: making={order.making_amount}, taking={order.taking_amount}"
        )

    signature = _lookup(sources, ("signature",))
    if signature is not None and not isinstance(signature, str):
        raise MalformedOrderData(f"Invalid signature field: {signature!r}")

    return OrderRecord(
        order_hash=payload.get("orderHash") or payload.get("order_hash") or order_hash or "",
        order=order,
        signature=signature,
        extension=_parse_extension(_lookup(sources, ("extension",))),
        raw=payload,
    )


class OrderHasher:
    """Computes EIP-712 order hashes for the 1inch Aggregation Router."""

    DOMAIN_TYPEHASH = keccak(
        b"EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
    )

    ORDER_TYPEHASH = keccak(
        b"Order(uint256 salt,address maker,address receiver,address makerAsset,address takerAsset,"
        b"uint256 makingAmount,uint256 takingAmount,uint256 makerTraits)"
    )

    def __init__(
        self,
        verifying_contract: str,
        chain_id: int,
        name: str = "1inch Aggregation Router",
        version: str = "6"
    ):
        self.verifying_contract = to_checksum_address(verifying_contract)
        self.chain_id = int(chain_id)
        self.name = name
        self.version = version
        self.domain_separator = self._compute_domain_separator()

    def _compute_domain_separator(self) -> bytes:
        return keccak(
            abi_encode(
                ["bytes32", "bytes32", "bytes32", "uint256", "address"],
                [
                    self.DOMAIN_TYPEHASH,
                    keccak(self.name.encode()),
                    keccak(self.version.encode()),
                    self.chain_id,
                    self.verifying_contract,
                ]
            )
        )

    def struct_hash(self, order: LimitOrder) -> bytes:
        return keccak(
            abi_encode(
                [
                    "bytes32", "uint256", "address", "address", "address",
                    "address", "uint256", "uint256", "uint256"
                ],
                [self.ORDER_TYPEHASH, *order.as_tuple()]
            )
        )

    def order_hash(self, order: LimitOrder) -> bytes:
        return keccak(b"\x19\x01" + self.domain_separator + self.struct_hash(order))

    def order_hash_hex(self, order: LimitOrder) -> str:
        return "0x" + self.order_hash(order).hex()


def normalize_order_hash(order_hash: str) -> str:
    """Lower-case ``0x``-prefixed 32-byte hex, or ``MalformedOrderData``."""
    if not isinstance(order_hash, str):
        raise MalformedOrderData(f"Invalid order hash: {order_hash!r}")
    value = order_hash.lower()
    if not value.startswith("0x"):
        value = "0x" + value
    try:
        raw = bytes.fromhex(value[2:])
    except ValueError as e:
        raise MalformedOrderData(f"Invalid order hash: {order_hash}") from e
    if len(raw) != 32:
        raise MalformedOrderData(f"Invalid order hash length: {len(raw)} bytes (expected 32)")
    return value
