"""Proof-of-work stamps required to open a datagram connection.

A client proves it spent some CPU before the server allocates state for
it: SHA-256 of ``token + nonce`` must start with *bits* zero bits.  Each
extra bit doubles the expected work, so load tests set this to 1.
"""

from __future__ import annotations

import hashlib

MAX_BITS = 32
_NONCE_BYTES = 8


def leading_zero_bits(digest: bytes) -> int:
    """Count the leading zero bits of *digest*."""
    count = 0
    for byte in digest:
        if byte == 0:
            count += 8
            continue
        count += 8 - byte.bit_length()
        break
    return count


def _digest(token: bytes, nonce: int) -> bytes:
    return hashlib.sha256(token + nonce.to_bytes(_NONCE_BYTES, "big")).digest()


def verify(token: bytes, nonce: int, bits: int) -> bool:
    """Return whether *nonce* is a valid stamp for *token* at *bits*."""
    if bits <= 0:
        return True
    if not 0 <= nonce < 1 << (8 * _NONCE_BYTES):
        return False
    return leading_zero_bits(_digest(token, nonce)) >= bits


def solve(token: bytes, bits: int) -> int:
    """Find the smallest nonce that stamps *token* with *bits* zero bits."""
    if bits > MAX_BITS:
        msg = f"hashcash bits must be at most {MAX_BITS}, got {bits}"
        raise ValueError(msg)
    if bits <= 0:
        return 0
    nonce = 0
    while leading_zero_bits(_digest(token, nonce)) < bits:
        nonce += 1
    return nonce
