"""Packet types exchanged with the motor controller and their payload encoding.

Payloads use a compact binary layout: enum variants are prefixed with a
varint discriminant, ``u8`` and ``bool`` fields take one byte, ``u16``
fields are LEB128 varints and ``i16`` fields are zigzag varints.
"""

from __future__ import annotations

import enum
import math
import struct
from dataclasses import dataclass
from datetime import timedelta
from typing import Union

PROTOCOL_VERSION = 2

_I16_MIN = -(1 << 15)
_I16_MAX = (1 << 15) - 1
_U16_MAX = (1 << 16) - 1
_NO_READING = _U16_MAX
_MAX_AMPS = 3.0


class ProtocolError(ValueError):
    """Raised when a payload cannot be encoded or decoded."""


def _f32(value: float) -> float:
    """Round a float to single precision."""
    return struct.unpack("<f", struct.pack("<f", value))[0]


class Motors(enum.IntFlag):
    """Set of motor channels, one bit per motor."""

    MOT0 = 0b0001
    MOT1 = 0b0010
    MOT2 = 0b0100
    MOT3 = 0b1000

    def indices(self) -> list[int]:
        """Indices of the named motors in this set, lowest first."""
        return [index for index in range(4) if (int(self) >> index) & 1]


@dataclass(frozen=True)
class Speed:
    """Signed motor speed, full scale at the i16 limits."""

    value: int

    def __post_init__(self) -> None:
        if not _I16_MIN <= self.value <= _I16_MAX:
            raise ValueError(f"speed {self.value} does not fit in an i16")

    @classmethod
    def from_float(cls, pct: float) -> Speed:
        """Build a speed from a fraction in [-1, 1]; values outside are clamped."""
        if math.isnan(pct):
            return cls(0)
        clamped = _f32(min(max(pct, -1.0), 1.0))
        return cls(int(_f32(clamped * _I16_MAX)))

    def as_float(self) -> float:
        """The speed as a fraction of full scale."""
        return _f32(self.value / _I16_MAX)


@dataclass(frozen=True)
class CurrentDraw:
    """Motor current; the all-ones value means no reading is available."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _U16_MAX:
            raise ValueError(f"current draw {self.value} does not fit in a u16")

    @classmethod
    def from_amps(cls, amps: float) -> CurrentDraw:
        """Encode a current in amps; negative values mean no reading."""
        if amps < 0.0:
            return cls(_NO_READING)
        if math.isnan(amps):
            return cls(0)
        clamped = _f32(min(max(amps, 0.0), _MAX_AMPS))
        scaled = _f32(_f32(clamped / _MAX_AMPS) * (_U16_MAX - 1))
        return cls(int(scaled))

    def as_amps(self) -> float:
        """The current in amps, or -1.0 when there is no reading."""
        if self.value == _NO_READING:
            return -1.0
        return _f32(_MAX_AMPS * self.value / (_U16_MAX - 1))


@dataclass(frozen=True)
class Interval:
    """A duration in whole milliseconds, stored in 16 bits."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _U16_MAX:
            raise ValueError(f"interval {self.value} does not fit in a u16")

    @classmethod
    def from_duration(cls, duration: timedelta) -> Interval:
        """Truncate a duration to milliseconds, keeping the low 16 bits."""
        if duration < timedelta(0):
            raise ValueError("interval cannot be negative")
        millis = duration // timedelta(milliseconds=1)
        return cls(millis & _U16_MAX)

    def as_duration(self) -> timedelta:
        return timedelta(milliseconds=self.value)


# Host -> controller packets


@dataclass(frozen=True)
class ResetToUsbBoot:
    """Ask the controller to reboot into its USB bootloader."""


@dataclass(frozen=True)
class ReadProtocolVersion:
    """Ask the controller for its protocol version."""


@dataclass(frozen=True)
class Ping:
    id: int


@dataclass(frozen=True)
class ReadSoftwareData:
    """Ask the controller for software information."""


@dataclass(frozen=True)
class StartStream:
    motors: Motors
    interval: Interval


@dataclass(frozen=True)
class SetSpeed:
    motors: Motors
    speed: Speed


@dataclass(frozen=True)
class Armed:
    """Arm the motors until ``duration`` passes without another arm request."""

    duration: Interval


@dataclass(frozen=True)
class Disarmed:
    """Disarm all motors immediately."""


# Controller -> host packets


class ErrorKind(enum.IntEnum):
    DECODING_ERROR = 0
    DECODING_BUFFER_OVERFLOW = 1
    UNIMPLEMENTED = 2
    UNKNOWN = 3


@dataclass(frozen=True)
class ErrorReport:
    kind: ErrorKind


@dataclass(frozen=True)
class ProtocolVersionResponse:
    version: int


@dataclass(frozen=True)
class Pong:
    id: int


@dataclass(frozen=True)
class SoftwareDataResponse:
    version: int


@dataclass(frozen=True)
class MotorState:
    motor_id: int
    last_speed: Speed
    current_draw: CurrentDraw
    is_fault: bool
    is_enabled: bool


PacketH2C = Union[
    ResetToUsbBoot,
    ReadProtocolVersion,
    Ping,
    ReadSoftwareData,
    StartStream,
    SetSpeed,
    Armed,
    Disarmed,
]
PacketC2H = Union[
    ProtocolVersionResponse, ErrorReport, Pong, SoftwareDataResponse, MotorState
]

H2C_PACKET_TYPES = (
    ResetToUsbBoot,
    ReadProtocolVersion,
    Ping,
    ReadSoftwareData,
    StartStream,
    SetSpeed,
    Armed,
    Disarmed,
)
C2H_PACKET_TYPES = (
    ProtocolVersionResponse,
    ErrorReport,
    Pong,
    SoftwareDataResponse,
    MotorState,
)


class _Writer:
    def __init__(self) -> None:
        self._out = bytearray()

    def u8(self, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise ProtocolError(f"value {value} does not fit in a u8")
        self._out.append(value)

    def boolean(self, value: bool) -> None:
        self._out.append(1 if value else 0)

    def varint(self, value: int) -> None:
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._out.append(byte | 0x80)
            else:
                self._out.append(byte)
                return

    def u16(self, value: int) -> None:
        if not 0 <= value <= _U16_MAX:
            raise ProtocolError(f"value {value} does not fit in a u16")
        self.varint(value)

    def i16(self, value: int) -> None:
        if not _I16_MIN <= value <= _I16_MAX:
            raise ProtocolError(f"value {value} does not fit in an i16")
        self.varint((value << 1) ^ (value >> 15))

    def motors(self, motors: Motors) -> None:
        self.u8(int(motors))

    def getvalue(self) -> bytes:
        return bytes(self._out)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def u8(self) -> int:
        if self._pos >= len(self._data):
            raise ProtocolError("unexpected end of payload")
        byte = self._data[self._pos]
        self._pos += 1
        return byte

    def boolean(self) -> bool:
        byte = self.u8()
        if byte > 1:
            raise ProtocolError(f"invalid boolean byte {byte}")
        return byte == 1

    def varint(self, bits: int) -> int:
        result = 0
        for shift in range(0, 7 * ((bits + 6) // 7), 7):
            byte = self.u8()
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                if result >> bits:
                    raise ProtocolError("varint out of range")
                return result
        raise ProtocolError("varint too long")

    def u16(self) -> int:
        return self.varint(16)

    def i16(self) -> int:
        raw = self.varint(16)
        return (raw >> 1) ^ -(raw & 1)

    def motors(self) -> Motors:
        return Motors(self.u8())


def encode_h2c(packet: PacketH2C) -> bytes:
    """Serialize a host-to-controller packet into its payload bytes."""
    writer = _Writer()
    match packet:
        case ResetToUsbBoot():
            writer.varint(0)
        case ReadProtocolVersion():
            writer.varint(1)
        case Ping(id=ident):
            writer.varint(2)
            writer.u8(ident)
        case ReadSoftwareData():
            writer.varint(3)
        case StartStream(motors=motors, interval=interval):
            writer.varint(4)
            writer.motors(motors)
            writer.u16(interval.value)
        case SetSpeed(motors=motors, speed=speed):
            writer.varint(5)
            writer.motors(motors)
            writer.i16(speed.value)
        case Armed(duration=duration):
            writer.varint(6)
            writer.varint(0)
            writer.u16(duration.value)
        case Disarmed():
            writer.varint(6)
            writer.varint(1)
        case _:
            raise ProtocolError(f"not a host-to-controller packet: {packet!r}")
    return writer.getvalue()


def decode_h2c(data: bytes) -> PacketH2C:
    """Parse a host-to-controller packet from payload bytes."""
    reader = _Reader(data)
    tag = reader.varint(32)
    if tag == 0:
        return ResetToUsbBoot()
    if tag == 1:
        return ReadProtocolVersion()
    if tag == 2:
        return Ping(reader.u8())
    if tag == 3:
        return ReadSoftwareData()
    if tag == 4:
        motors = reader.motors()
        return StartStream(motors, Interval(reader.u16()))
    if tag == 5:
        motors = reader.motors()
        return SetSpeed(motors, Speed(reader.i16()))
    if tag == 6:
        sub = reader.varint(32)
        if sub == 0:
            return Armed(Interval(reader.u16()))
        if sub == 1:
            return Disarmed()
        raise ProtocolError(f"unknown arm state {sub}")
    raise ProtocolError(f"unknown host-to-controller packet {tag}")


def encode_c2h(packet: PacketC2H) -> bytes:
    """Serialize a controller-to-host packet into its payload bytes."""
    writer = _Writer()
    match packet:
        case ProtocolVersionResponse(version=version):
            writer.varint(0)
            writer.u16(version)
        case ErrorReport(kind=kind):
            writer.varint(1)
            writer.varint(int(kind))
        case Pong(id=ident):
            writer.varint(2)
            writer.u8(ident)
        case SoftwareDataResponse(version=version):
            writer.varint(3)
            writer.u16(version)
        case MotorState():
            writer.varint(4)
            writer.u8(packet.motor_id)
            writer.i16(packet.last_speed.value)
            writer.u16(packet.current_draw.value)
            writer.boolean(packet.is_fault)
            writer.boolean(packet.is_enabled)
        case _:
            raise ProtocolError(f"not a controller-to-host packet: {packet!r}")
    return writer.getvalue()


def decode_c2h(data: bytes) -> PacketC2H:
    """Parse a controller-to-host packet from payload bytes."""
    reader = _Reader(data)
    tag = reader.varint(32)
    if tag == 0:
        return ProtocolVersionResponse(reader.u16())
    if tag == 1:
        index = reader.varint(32)
        try:
            kind = ErrorKind(index)
        except ValueError:
            kind = ErrorKind.UNKNOWN
        return ErrorReport(kind)
    if tag == 2:
        return Pong(reader.u8())
    if tag == 3:
        return SoftwareDataResponse(reader.u16())
    if tag == 4:
        motor_id = reader.u8()
        last_speed = Speed(reader.i16())
        current_draw = CurrentDraw(reader.u16())
        is_fault = reader.boolean()
        is_enabled = reader.boolean()
        return MotorState(motor_id, last_speed, current_draw, is_fault, is_enabled)
    raise ProtocolError(f"unknown controller-to-host packet {tag}")