"""World messages exchanged between the world server and its clients.

Every message starts with a one-byte :class:`MessageType`.  Entity ids
are unsigned 32-bit big-endian integers; strings are UTF-8 prefixed by a
16-bit length.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

_ENTITY_ID = struct.Struct("!I")
_STRING_LENGTH = struct.Struct("!H")


class MessageType(IntEnum):
    """World message type codes."""

    JOIN = 0x01
    SPAWN = 0x02
    DESPAWN = 0x03
    AUTHORITY = 0x04
    RPC = 0x05


@dataclass(frozen=True, slots=True)
class JoinMessage:
    """Client introduction; asks the server to create a player entity."""


@dataclass(frozen=True, slots=True)
class SpawnMessage:
    """Server announcement of an entity entering the world."""

    entity_id: int
    prefab: str
    name: str


@dataclass(frozen=True, slots=True)
class DespawnMessage:
    """Server announcement of an entity leaving the world."""

    entity_id: int


@dataclass(frozen=True, slots=True)
class AuthorityMessage:
    """Grant or revoke the receiver's authority over an entity."""

    entity_id: int
    granted: bool


@dataclass(frozen=True, slots=True)
class RpcMessage:
    """Client-originated remote call on an entity it has authority over."""

    entity_id: int
    method: str


WorldMessage = JoinMessage | SpawnMessage | DespawnMessage | AuthorityMessage | RpcMessage


def message_type(message: WorldMessage) -> MessageType:
    """Return the type code for *message*."""
    match message:
        case JoinMessage():
            return MessageType.JOIN
        case SpawnMessage():
            return MessageType.SPAWN
        case DespawnMessage():
            return MessageType.DESPAWN
        case AuthorityMessage():
            return MessageType.AUTHORITY
        case RpcMessage():
            return MessageType.RPC
    msg = f"Not a world message: {message!r}"
    raise TypeError(msg)


def _encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > 0xFFFF:
        msg = f"String too long to encode: {len(raw)} bytes"
        raise ValueError(msg)
    return _STRING_LENGTH.pack(len(raw)) + raw


def _decode_string(data: bytes, offset: int) -> tuple[str, int]:
    if offset + _STRING_LENGTH.size > len(data):
        msg = "Truncated string length"
        raise ValueError(msg)
    (length,) = _STRING_LENGTH.unpack_from(data, offset)
    offset += _STRING_LENGTH.size
    if offset + length > len(data):
        msg = f"Truncated string: need {length} bytes, have {len(data) - offset}"
        raise ValueError(msg)
    return data[offset : offset + length].decode("utf-8"), offset + length


def _decode_entity_id(data: bytes) -> int:
    if len(data) < 1 + _ENTITY_ID.size:
        msg = f"Message too short for entity id: {len(data)} bytes"
        raise ValueError(msg)
    (entity_id,) = _ENTITY_ID.unpack_from(data, 1)
    return entity_id


def encode_message(message: WorldMessage) -> bytes:
    """Encode *message* into its wire form."""
    header = bytes([message_type(message)])
    match message:
        case JoinMessage():
            return header
        case SpawnMessage(entity_id=entity_id, prefab=prefab, name=name):
            return (
                header + _ENTITY_ID.pack(entity_id) + _encode_string(prefab) + _encode_string(name)
            )
        case DespawnMessage(entity_id=entity_id):
            return header + _ENTITY_ID.pack(entity_id)
        case AuthorityMessage(entity_id=entity_id, granted=granted):
            return header + _ENTITY_ID.pack(entity_id) + (b"\x01" if granted else b"\x00")
        case RpcMessage(entity_id=entity_id, method=method):
            return header + _ENTITY_ID.pack(entity_id) + _encode_string(method)
    msg = f"Not a world message: {message!r}"
    raise TypeError(msg)


def decode_message(data: bytes) -> WorldMessage:
    """Decode one world message.

    :raises ValueError: If *data* is empty, truncated, has an unknown type
        or carries invalid UTF-8.
    """
    if not data:
        msg = "Empty world message"
        raise ValueError(msg)

    kind = MessageType(data[0])
    offset = 1 + _ENTITY_ID.size
    match kind:
        case MessageType.JOIN:
            return JoinMessage()
        case MessageType.SPAWN:
            entity_id = _decode_entity_id(data)
            prefab, offset = _decode_string(data, offset)
            name, offset = _decode_string(data, offset)
            return SpawnMessage(entity_id=entity_id, prefab=prefab, name=name)
        case MessageType.DESPAWN:
            return DespawnMessage(entity_id=_decode_entity_id(data))
        case MessageType.AUTHORITY:
            entity_id = _decode_entity_id(data)
            if len(data) < offset + 1:
                msg = "AUTHORITY message missing granted flag"
                raise ValueError(msg)
            return AuthorityMessage(entity_id=entity_id, granted=data[offset] != 0)
        case MessageType.RPC:
            entity_id = _decode_entity_id(data)
            method, offset = _decode_string(data, offset)
            return RpcMessage(entity_id=entity_id, method=method)
