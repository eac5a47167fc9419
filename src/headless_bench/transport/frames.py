"""Datagram transport framing."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

FRAME_MAGIC = 0xB7
FRAME_HEADER_LENGTH = 4  # Magic(1) + Kind(1) + Length(2)
MAX_FRAME_LENGTH = 0xFFFF

CLIENT_TOKEN_LENGTH = 16
_CONNECT_PAYLOAD = struct.Struct("!16sQ")
_SEQUENCE = struct.Struct("!I")


class FrameKind(IntEnum):
    """Datagram frame kinds."""

    CONNECT = 0x01
    ACCEPT = 0x02
    REJECT = 0x03
    DATA = 0x04
    DISCONNECT = 0x05
    ACK = 0x06
    PING = 0x07


@dataclass(frozen=True, slots=True)
class Frame:
    """Decoded datagram frame."""

    kind: FrameKind
    payload: bytes


def encode_frame(kind: FrameKind, payload: bytes = b"") -> bytes:
    """Encode a complete datagram frame.

    :param kind: Frame kind.
    :param payload: Frame payload bytes.
    :returns: Frame bytes ready for UDP transmission.
    :raises ValueError: If the frame would exceed :data:`MAX_FRAME_LENGTH`.
    """
    total = FRAME_HEADER_LENGTH + len(payload)
    if total > MAX_FRAME_LENGTH:
        msg = f"Frame too large: {total} bytes (max {MAX_FRAME_LENGTH})"
        raise ValueError(msg)
    buf = bytearray(total)
    buf[0] = FRAME_MAGIC
    buf[1] = kind
    struct.pack_into("!H", buf, 2, total)
    buf[4:] = payload
    return bytes(buf)


def decode_frame(data: bytes) -> Frame:
    """Decode a datagram frame.

    :raises ValueError: If *data* is too short, carries the wrong magic
        byte or an unknown kind, or declares an inconsistent length.
    """
    if len(data) < FRAME_HEADER_LENGTH:
        msg = f"Frame too short: need at least {FRAME_HEADER_LENGTH} bytes, got {len(data)}"
        raise ValueError(msg)
    if data[0] != FRAME_MAGIC:
        msg = f"Invalid frame magic: {data[0]:#x}"
        raise ValueError(msg)
    kind = FrameKind(data[1])
    length = (data[2] << 8) | data[3]
    if length < FRAME_HEADER_LENGTH or length > len(data):
        msg = f"Invalid frame length: declared {length}, actual {len(data)}"
        raise ValueError(msg)
    return Frame(kind=kind, payload=bytes(data[4:length]))


def encode_connect(token: bytes, nonce: int) -> bytes:
    """Encode a CONNECT frame carrying the client token and hashcash nonce."""
    return encode_frame(FrameKind.CONNECT, _CONNECT_PAYLOAD.pack(token, nonce))


def decode_connect(payload: bytes) -> tuple[bytes, int]:
    """Decode a CONNECT payload into ``(token, nonce)``."""
    if len(payload) != _CONNECT_PAYLOAD.size:
        msg = f"CONNECT payload must be {_CONNECT_PAYLOAD.size} bytes, got {len(payload)}"
        raise ValueError(msg)
    token, nonce = _CONNECT_PAYLOAD.unpack(payload)
    return token, nonce


def encode_data(sequence: int, payload: bytes) -> bytes:
    """Encode a DATA frame carrying *payload* at *sequence*."""
    return encode_frame(FrameKind.DATA, _SEQUENCE.pack(sequence) + payload)


def decode_data(payload: bytes) -> tuple[int, bytes]:
    """Decode a DATA payload into ``(sequence, data)``."""
    if len(payload) < _SEQUENCE.size:
        msg = f"DATA payload too short: need at least {_SEQUENCE.size} bytes, got {len(payload)}"
        raise ValueError(msg)
    (sequence,) = _SEQUENCE.unpack_from(payload)
    return sequence, payload[_SEQUENCE.size :]


def encode_ack(next_sequence: int) -> bytes:
    """Encode a cumulative ACK: every DATA frame below *next_sequence* arrived."""
    return encode_frame(FrameKind.ACK, _SEQUENCE.pack(next_sequence))


def decode_ack(payload: bytes) -> int:
    """Decode an ACK payload into the next expected sequence number."""
    if len(payload) != _SEQUENCE.size:
        msg = f"ACK payload must be {_SEQUENCE.size} bytes, got {len(payload)}"
        raise ValueError(msg)
    (next_sequence,) = _SEQUENCE.unpack(payload)
    return next_sequence
