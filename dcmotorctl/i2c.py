"""Register-style command interface served over I2C."""

from __future__ import annotations

import enum
import logging
import struct

from .handler import HandlerContext, handle_inbound_packet
from .protocol import (
    Armed,
    CurrentDraw,
    Disarmed,
    Interval,
    Motors,
    SetSpeed,
    Speed,
)

log = logging.getLogger(__name__)

I2C_ADDRESS = 0x42
_MOTOR_MASK = 0x0F


class I2cCommand(enum.IntEnum):
    SET_SPEED = 0
    READ_MOTOR = 1
    ARM = 2


class _Message:
    """Big-endian reader over a received I2C write."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def _take(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self._pos + size > len(self._data):
            raise ValueError("i2c message too short")
        (value,) = struct.unpack_from(fmt, self._data, self._pos)
        self._pos += size
        return value

    def u8(self) -> int:
        return self._take(">B")

    def u16(self) -> int:
        return self._take(">H")

    def i16(self) -> int:
        return self._take(">h")

    def motors(self) -> Motors:
        return Motors(self.u8() & _MOTOR_MASK)


def _detached(ctx: HandlerContext) -> HandlerContext:
    """A context sharing the board and watchdog but with its own outbound queue."""
    return HandlerContext(ctx.board, ctx.watchdog)


async def handle_i2c_message(msg: bytes, ctx: HandlerContext) -> bytes:
    """Handle one I2C write and return the bytes to respond with."""
    reader = _Message(msg)
    response = bytearray()
    cmd = reader.u8()

    try:
        command = I2cCommand(cmd)
    except ValueError:
        log.error("Received unknown i2c packet id: %d", cmd)
        return bytes(response)

    if command is I2cCommand.SET_SPEED:
        motors = reader.motors()
        speed = Speed(reader.i16())
        await handle_inbound_packet(_detached(ctx), SetSpeed(motors, speed))

        if ctx.board is None:
            response.append(0)
        else:
            indices = motors.indices()
            response.append(len(indices))
            for motor_id in indices:
                motor = ctx.board[motor_id]
                response += struct.pack(
                    ">BHB",
                    motor_id,
                    CurrentDraw.from_amps(motor.current_draw()).value,
                    int(motor.is_fault),
                )

    elif command is I2cCommand.READ_MOTOR:
        motors = reader.motors()
        if ctx.board is None:
            response.append(0)
        else:
            indices = motors.indices()
            response.append(len(indices))
            for motor_id in indices:
                motor = ctx.board[motor_id]
                response += struct.pack(
                    ">BhHB",
                    motor_id,
                    Speed.from_float(motor.last_speed).value,
                    CurrentDraw.from_amps(motor.current_draw()).value,
                    int(motor.is_fault),
                )

    else:
        duration = Interval(reader.u16())
        packet = Armed(duration) if duration.value > 0 else Disarmed()
        await handle_inbound_packet(_detached(ctx), packet)

    return bytes(response)