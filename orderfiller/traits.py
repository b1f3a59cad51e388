"""Packed maker/taker trait bitfields of the Limit Order Protocol v4."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

from eth_utils import to_bytes, to_checksum_address

UINT256_MAX = (1 << 256) - 1

# MakerTraits flags (bit positions)
NO_PARTIAL_FILLS_FLAG = 255
ALLOW_MULTIPLE_FILLS_FLAG = 254
PRE_INTERACTION_CALL_FLAG = 252
POST_INTERACTION_CALL_FLAG = 251
NEED_CHECK_EPOCH_MANAGER_FLAG = 250
HAS_EXTENSION_FLAG = 249
USE_PERMIT2_FLAG = 248
UNWRAP_WETH_FLAG = 247

ALLOWED_SENDER_MASK = (1 << 80) - 1
EXPIRATION_OFFSET = 80
NONCE_OR_EPOCH_OFFSET = 120
SERIES_OFFSET = 160
UINT40_MASK = (1 << 40) - 1

# TakerTraits layout
TAKER_MAKER_AMOUNT_FLAG = 1 << 255
TAKER_UNWRAP_WETH_FLAG = 1 << 254
TAKER_SKIP_ORDER_PERMIT_FLAG = 1 << 253
TAKER_USE_PERMIT2_FLAG = 1 << 252
TAKER_ARGS_HAS_TARGET = 1 << 251
ARGS_EXTENSION_LENGTH_OFFSET = 224
ARGS_INTERACTION_LENGTH_OFFSET = 200
ARGS_LENGTH_MASK = 0xFFFFFF
THRESHOLD_MASK = (1 << 185) - 1


def _bit(value: int, position: int) -> bool:
    return bool((value >> position) & 1)


@dataclass(frozen=True)
class MakerTraits:
    value: int
    allowed_sender: int
    expiration: int
    nonce_or_epoch: int
    series: int

    @classmethod
    def from_int(cls, value: int) -> "MakerTraits":
        value = int(value)
        if value < 0 or value > UINT256_MAX:
            raise ValueError(f"maker traits out of uint256 range: {value}")
        return cls(
            value=value,
            allowed_sender=value & ALLOWED_SENDER_MASK,
            expiration=(value >> EXPIRATION_OFFSET) & UINT40_MASK,
            nonce_or_epoch=(value >> NONCE_OR_EPOCH_OFFSET) & UINT40_MASK,
            series=(value >> SERIES_OFFSET) & UINT40_MASK,
        )

    @property
    def allow_partial_fills(self) -> bool:
        return not _bit(self.value, NO_PARTIAL_FILLS_FLAG)

    @property
    def allow_multiple_fills(self) -> bool:
        return _bit(self.value, ALLOW_MULTIPLE_FILLS_FLAG)

    @property
    def has_extension(self) -> bool:
        return _bit(self.value, HAS_EXTENSION_FLAG)

    @property
    def use_bit_invalidator(self) -> bool:
        # Single-fill orders are invalidated by nonce bit, not by remaining amount
        return not self.allow_partial_fills or not self.allow_multiple_fills

    def invalidator_slot(self) -> Tuple[int, int]:
        """``(slot, bit mask)`` of this order's nonce in the maker's bit invalidator."""
        return self.nonce_or_epoch >> 8, 1 << (self.nonce_or_epoch & 0xFF)

    @property
    def need_pre_interaction(self) -> bool:
        return _bit(self.value, PRE_INTERACTION_CALL_FLAG)

    @property
    def need_post_interaction(self) -> bool:
        return _bit(self.value, POST_INTERACTION_CALL_FLAG)

    @property
    def need_check_epoch_manager(self) -> bool:
        return _bit(self.value, NEED_CHECK_EPOCH_MANAGER_FLAG)

    @property
    def use_permit2(self) -> bool:
        return _bit(self.value, USE_PERMIT2_FLAG)

    @property
    def unwrap_weth(self) -> bool:
        return _bit(self.value, UNWRAP_WETH_FLAG)

    def is_expired(self, now: Optional[int] = None) -> bool:
        # Zero expiration means the order never expires
        if self.expiration == 0:
            return False
        current = int(time.time()) if now is None else int(now)
        return self.expiration < current


@dataclass
class TakerTraits:
    """Builder for the ``takerTraits`` word and the ``args`` blob of ``*Args`` fills."""

    maker_amount: bool = False
    threshold: int = 0
    extension: bytes = b""
    interaction: bytes = b""
    target: Optional[str] = None
    unwrap_weth: bool = False
    skip_order_permit: bool = False
    use_permit2: bool = False

    def encode(self) -> Tuple[int, bytes]:
        if self.threshold < 0 or self.threshold > THRESHOLD_MASK:
            raise ValueError(f"threshold does not fit in 185 bits: {self.threshold}")
        if len(self.extension) > ARGS_LENGTH_MASK or len(self.interaction) > ARGS_LENGTH_MASK:
            raise ValueError("extension or interaction longer than 2^24 bytes")

        traits = self.threshold
        args = b""

        if self.maker_amount:
            traits |= TAKER_MAKER_AMOUNT_FLAG
        if self.unwrap_weth:
            traits |= TAKER_UNWRAP_WETH_FLAG
        if self.skip_order_permit:
            traits |= TAKER_SKIP_ORDER_PERMIT_FLAG
        if self.use_permit2:
            traits |= TAKER_USE_PERMIT2_FLAG
        if self.target is not None:
            traits |= TAKER_ARGS_HAS_TARGET
            args += to_bytes(hexstr=to_checksum_address(self.target))

        traits |= len(self.extension) << ARGS_EXTENSION_LENGTH_OFFSET
        traits |= len(self.interaction) << ARGS_INTERACTION_LENGTH_OFFSET
        args += self.extension + self.interaction
        return traits, args
