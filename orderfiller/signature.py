"""ECDSA signature helpers for order fills."""
from __future__ import annotations

from typing import Tuple, Union

from eth_keys import keys
from eth_utils import to_bytes

from .exceptions import MalformedOrderData

SignatureLike = Union[str, bytes]

_HIGH_BIT = 1 << 255
_S_MASK = _HIGH_BIT - 1


def signature_bytes(signature: SignatureLike) -> bytes:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    if not isinstance(signature, str) or not signature:
        raise MalformedOrderData(f"Invalid signature format: {signature!r}")
    try:
        return to_bytes(hexstr=signature)
    except (ValueError, TypeError) as e:
        raise MalformedOrderData(f"Invalid signature format: {e}") from e


def split_signature(signature: SignatureLike) -> Tuple[bytes, bytes]:
    """Split a signature into the EIP-2098 ``(r, vs)`` pair.

    ``vs`` is ``s`` with the recovery bit packed into its highest bit.
    A 64-byte signature is taken as already compact.
    """
    sig = signature_bytes(signature)

    if len(sig) == 64:
        return sig[:32], sig[32:]
    if len(sig) != 65:
        raise MalformedOrderData(f"Invalid signature length: {len(sig)} (expected 65)")

    r = sig[:32]
    s = int.from_bytes(sig[32:64], "big")
    v = sig[64]

    # Some wallets use 0/1, some use 27/28
    if v < 27:
        v += 27
    if v not in (27, 28):
        raise MalformedOrderData(f"Invalid signature recovery id: {sig[64]}")
    if s & _HIGH_BIT:
        raise MalformedOrderData("Invalid signature: s is not in the lower half order")

    vs = s | ((v - 27) << 255)
    return r, vs.to_bytes(32, "big")


def join_signature(r: bytes, vs: bytes) -> bytes:
    """Rebuild the 65-byte ``r || s || v`` form from ``(r, vs)``."""
    if len(r) != 32 or len(vs) != 32:
        raise MalformedOrderData("r and vs must be 32 bytes each")
    vs_int = int.from_bytes(vs, "big")
    v = 28 if vs_int & _HIGH_BIT else 27
    s = vs_int & _S_MASK
    return r + s.to_bytes(32, "big") + bytes([v])


def recover_signer(message_hash: bytes, signature: SignatureLike) -> str:
    """Recover the checksummed signer address of a 32-byte digest."""
    sig = signature_bytes(signature)
    if len(sig) == 64:
        sig = join_signature(sig[:32], sig[32:])
    r, vs = split_signature(sig)
    sig = join_signature(r, vs)

    r_int = int.from_bytes(sig[:32], "big")
    s_int = int.from_bytes(sig[32:64], "big")
    # eth-keys expects a 0/1 recovery id
    v = sig[64] - 27

    try:
        public_key = keys.Signature(vrs=(v, r_int, s_int)).recover_public_key_from_msg_hash(message_hash)
    except Exception as e:
        raise MalformedOrderData(f"Signature recovery failed: {e}") from e
    return public_key.to_checksum_address()
