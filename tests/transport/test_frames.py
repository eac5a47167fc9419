"""Tests for datagram framing (frames.py)."""

import pytest

from headless_bench.transport.frames import (
    CLIENT_TOKEN_LENGTH,
    FRAME_HEADER_LENGTH,
    FRAME_MAGIC,
    MAX_FRAME_LENGTH,
    Frame,
    FrameKind,
    decode_ack,
    decode_connect,
    decode_data,
    decode_frame,
    encode_ack,
    encode_connect,
    encode_data,
    encode_frame,
)


class TestEncodeFrame:
    def test_header_layout(self):
        data = encode_frame(FrameKind.DATA, b"\x01\x02\x03")
        assert data == bytes([FRAME_MAGIC, 0x04, 0x00, 0x07, 0x01, 0x02, 0x03])

    def test_empty_payload(self):
        data = encode_frame(FrameKind.DISCONNECT)
        assert len(data) == FRAME_HEADER_LENGTH
        assert data[2:4] == b"\x00\x04"

    def test_too_large(self):
        with pytest.raises(ValueError, match="Frame too large"):
            encode_frame(FrameKind.DATA, bytes(MAX_FRAME_LENGTH))


class TestDecodeFrame:
    def test_decode(self):
        frame = decode_frame(encode_frame(FrameKind.ACCEPT, b"ok"))
        assert frame == Frame(kind=FrameKind.ACCEPT, payload=b"ok")

    def test_trailing_bytes_ignored(self):
        data = encode_frame(FrameKind.DATA, b"abc") + b"\xff\xff"
        assert decode_frame(data).payload == b"abc"

    def test_too_short(self):
        with pytest.raises(ValueError, match="Frame too short"):
            decode_frame(b"\xb7\x04")

    def test_wrong_magic(self):
        with pytest.raises(ValueError, match="Invalid frame magic"):
            decode_frame(b"\x81\x04\x00\x04")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            decode_frame(bytes([FRAME_MAGIC, 0x7F, 0x00, 0x04]))

    def test_declared_length_exceeds_data(self):
        with pytest.raises(ValueError, match="Invalid frame length"):
            decode_frame(bytes([FRAME_MAGIC, 0x04, 0x00, 0x10, 0x01]))

    def test_declared_length_below_header(self):
        with pytest.raises(ValueError, match="Invalid frame length"):
            decode_frame(bytes([FRAME_MAGIC, 0x04, 0x00, 0x02]))


class TestConnectPayload:
    def test_layout(self):
        token = bytes(range(CLIENT_TOKEN_LENGTH))
        frame = decode_frame(encode_connect(token, 0x0102))
        assert frame.kind is FrameKind.CONNECT
        assert frame.payload == token + b"\x00\x00\x00\x00\x00\x00\x01\x02"

    def test_decode(self):
        token = b"\xaa" * CLIENT_TOKEN_LENGTH
        payload = decode_frame(encode_connect(token, 42)).payload
        assert decode_connect(payload) == (token, 42)

    def test_wrong_size(self):
        with pytest.raises(ValueError, match="CONNECT payload"):
            decode_connect(b"\x00" * 10)


class TestSequencedFrames:
    def test_data_layout(self):
        data = encode_data(0x01020304, b"xy")
        assert data == bytes([FRAME_MAGIC, 0x04, 0x00, 0x0A, 0x01, 0x02, 0x03, 0x04]) + b"xy"

    def test_decode_data(self):
        frame = decode_frame(encode_data(7, b"payload"))
        assert decode_data(frame.payload) == (7, b"payload")

    def test_data_too_short(self):
        with pytest.raises(ValueError, match="DATA payload too short"):
            decode_data(b"\x00\x01")

    def test_ack_layout(self):
        assert encode_ack(258) == bytes([FRAME_MAGIC, 0x06, 0x00, 0x08, 0x00, 0x00, 0x01, 0x02])

    def test_decode_ack(self):
        assert decode_ack(decode_frame(encode_ack(42)).payload) == 42

    def test_ack_wrong_size(self):
        with pytest.raises(ValueError, match="ACK payload must be 4 bytes"):
            decode_ack(b"\x00\x00\x01")

    def test_ping_is_empty(self):
        frame = decode_frame(encode_frame(FrameKind.PING))
        assert frame == Frame(kind=FrameKind.PING, payload=b"")
