"""Tests for maker/taker trait bitfields."""
import pytest

from orderfiller.traits import (
    ALLOW_MULTIPLE_FILLS_FLAG,
    ARGS_EXTENSION_LENGTH_OFFSET,
    ARGS_INTERACTION_LENGTH_OFFSET,
    HAS_EXTENSION_FLAG,
    NO_PARTIAL_FILLS_FLAG,
    TAKER_ARGS_HAS_TARGET,
    TAKER_MAKER_AMOUNT_FLAG,
    TAKER_UNWRAP_WETH_FLAG,
    MakerTraits,
    TakerTraits,
)


def test_maker_traits_defaults():
    traits = MakerTraits.from_int(0)

    assert traits.allow_partial_fills is True
    assert traits.allow_multiple_fills is False
    assert traits.has_extension is False
    assert traits.expiration == 0
    assert traits.is_expired() is False


def test_maker_traits_fields_and_flags():
    allowed_sender = 0x1234
    value = (
        (1 << NO_PARTIAL_FILLS_FLAG)
        | (1 << ALLOW_MULTIPLE_FILLS_FLAG)
        | (1 << HAS_EXTENSION_FLAG)
        | (7 << 160)  # series
        | (5 << 120)  # nonce
        | (1700000000 << 80)
        | allowed_sender
    )
    traits = MakerTraits.from_int(value)

    assert traits.allow_partial_fills is False
    assert traits.allow_multiple_fills is True
    assert traits.has_extension is True
    assert traits.series == 7
    assert traits.nonce_or_epoch == 5
    assert traits.expiration == 1700000000
    assert traits.allowed_sender == allowed_sender


def test_expiration_is_compared_to_now():
    traits = MakerTraits.from_int(1000 << 80)

    assert traits.is_expired(now=999) is False
    assert traits.is_expired(now=1000) is False
    assert traits.is_expired(now=1001) is True


def test_maker_traits_range_checked():
    with pytest.raises(ValueError):
        MakerTraits.from_int(-1)
    with pytest.raises(ValueError):
        MakerTraits.from_int(1 << 256)


def test_taker_traits_plain_fill():
    traits, args = TakerTraits().encode()
    assert traits == 0
    assert args == b""


def test_taker_traits_threshold_and_flags():
    traits, _ = TakerTraits(maker_amount=True, unwrap_weth=True, threshold=12345).encode()

    assert traits & TAKER_MAKER_AMOUNT_FLAG
    assert traits & TAKER_UNWRAP_WETH_FLAG
    assert traits & ((1 << 185) - 1) == 12345


def test_taker_traits_args_layout():
    target = "0x3333333333333333333333333333333333333333"
    extension = b"\xaa" * 10
    interaction = b"\xbb" * 3

    traits, args = TakerTraits(extension=extension, interaction=interaction, target=target).encode()

    assert traits & TAKER_ARGS_HAS_TARGET
    assert (traits >> ARGS_EXTENSION_LENGTH_OFFSET) & 0xFFFFFF == 10
    assert (traits >> ARGS_INTERACTION_LENGTH_OFFSET) & 0xFFFFFF == 3
    assert args == bytes.fromhex(target[2:]) + extension + interaction


def test_taker_threshold_must_fit():
    with pytest.raises(ValueError):
        TakerTraits(threshold=1 << 185).encode()


def test_maker_traits_interaction_flags():
    traits = MakerTraits.from_int((1 << 252) | (1 << 251) | (1 << 250) | (1 << 248) | (1 << 247))

    assert traits.need_pre_interaction is True
    assert traits.need_post_interaction is True
    assert traits.need_check_epoch_manager is True
    assert traits.use_permit2 is True
    assert traits.unwrap_weth is True
    assert MakerTraits.from_int(0).need_pre_interaction is False


def test_invalidator_selection_and_slot():
    single = MakerTraits.from_int(300 << 120)
    assert single.use_bit_invalidator is True
    assert single.invalidator_slot() == (1, 1 << 44)

    assert MakerTraits.from_int(1 << NO_PARTIAL_FILLS_FLAG).use_bit_invalidator is True
    assert MakerTraits.from_int(1 << ALLOW_MULTIPLE_FILLS_FLAG).use_bit_invalidator is False
