"""Packet framing: CRC-16/USB trailer, COBS encoding and a streaming decoder."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable

from .protocol import (
    C2H_PACKET_TYPES,
    H2C_PACKET_TYPES,
    ProtocolError,
    encode_c2h,
    encode_h2c,
)

MAX_FRAME_SIZE = 128


class FrameError(ValueError):
    """Raised when a frame is malformed or fails its checksum."""


def _build_crc_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _build_crc_table()


def crc16_usb(data: bytes) -> int:
    """CRC-16/USB (reflected poly 0x8005, init and xorout 0xFFFF)."""
    crc = 0xFFFF
    for byte in data:
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc ^ 0xFFFF


def cobs_encode(data: bytes) -> bytes:
    """COBS-encode ``data``; the result holds no zero bytes and no terminator."""
    out = bytearray([0])
    code_index = 0
    code = 1
    for byte in data:
        if byte == 0:
            out[code_index] = code
            code_index = len(out)
            out.append(0)
            code = 1
            continue
        out.append(byte)
        code += 1
        if code == 0xFF:
            out[code_index] = code
            code_index = len(out)
            out.append(0)
            code = 1
    out[code_index] = code
    return bytes(out)


def cobs_decode(data: bytes) -> bytes:
    """Decode COBS data, with or without its trailing zero terminator."""
    data = bytes(data)
    if data.endswith(b"\x00"):
        data = data[:-1]
    out = bytearray()
    pos = 0
    while pos < len(data):
        code = data[pos]
        if code == 0:
            raise FrameError("zero byte inside COBS data")
        end = pos + code
        if end > len(data):
            raise FrameError("truncated COBS block")
        block = data[pos + 1 : end]
        if 0 in block:
            raise FrameError("zero byte inside COBS data")
        out += block
        pos = end
        if code < 0xFF and pos < len(data):
            out.append(0)
    return bytes(out)


def encode_frame(payload: bytes) -> bytes:
    """Append the CRC, COBS-encode and terminate the frame with a zero byte."""
    body = bytes(payload) + crc16_usb(payload).to_bytes(2, "little")
    return cobs_encode(body) + b"\x00"


def decode_frame(frame: bytes) -> bytes:
    """Undo :func:`encode_frame`, checking the CRC and returning the payload."""
    body = cobs_decode(frame)
    if len(body) < 2:
        raise FrameError("frame too short for checksum")
    payload, trailer = body[:-2], body[-2:]
    if crc16_usb(payload) != int.from_bytes(trailer, "little"):
        raise FrameError("checksum mismatch")
    return payload


def encode_packet(packet: Any) -> bytes:
    """Serialize and frame a packet of either direction."""
    if isinstance(packet, H2C_PACKET_TYPES):
        payload = encode_h2c(packet)
    elif isinstance(packet, C2H_PACKET_TYPES):
        payload = encode_c2h(packet)
    else:
        raise ProtocolError(f"not a packet: {packet!r}")
    frame = encode_frame(payload)
    if len(frame) > MAX_FRAME_SIZE:
        raise FrameError(f"frame of {len(frame)} bytes exceeds {MAX_FRAME_SIZE}")
    return frame


class FeedStatus(enum.Enum):
    CONSUMED = "consumed"
    OVERFULL = "overfull"
    DESER_ERROR = "deser_error"
    SUCCESS = "success"


@dataclass(frozen=True)
class FeedResult:
    """Outcome of one :meth:`PacketDecoder.feed` call.

    ``remaining`` is the input not yet consumed; ``packet`` is set on success.
    """

    status: FeedStatus
    remaining: bytes = b""
    packet: Any = None


class PacketDecoder:
    """Accumulates bytes until a zero terminator and parses the framed packet."""

    def __init__(
        self,
        parse: Callable[[bytes], Any],
        capacity: int = MAX_FRAME_SIZE,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._parse = parse
        self._capacity = capacity
        self._buffer = bytearray()

    def feed(self, data: bytes) -> FeedResult:
        """Consume input up to and including the first frame terminator."""
        data = bytes(data)
        if not data:
            return FeedResult(FeedStatus.CONSUMED)

        zero = data.find(0)
        if zero >= 0:
            take, release = data[: zero + 1], data[zero + 1 :]
            if len(self._buffer) + len(take) > self._capacity:
                self._buffer.clear()
                return FeedResult(FeedStatus.OVERFULL, release)
            self._buffer += take
            frame = bytes(self._buffer)
            self._buffer.clear()
            try:
                packet = self._parse(decode_frame(frame))
            except ValueError:
                return FeedResult(FeedStatus.DESER_ERROR, release)
            return FeedResult(FeedStatus.SUCCESS, release, packet)

        if len(self._buffer) + len(data) > self._capacity:
            new_start = self._capacity - len(self._buffer)
            self._buffer.clear()
            return FeedResult(FeedStatus.OVERFULL, data[new_start:])
        self._buffer += data
        return FeedResult(FeedStatus.CONSUMED)

    def reset(self) -> None:
        """Drop any partially received frame."""
        self._buffer.clear()