"""Controller-side handling of packets received from the host."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Generic, TypeVar

from .device import Board, SafetyWatchdog
from .framing import FeedStatus, PacketDecoder
from .protocol import (
    PROTOCOL_VERSION,
    Armed,
    CurrentDraw,
    Disarmed,
    ErrorKind,
    ErrorReport,
    MotorState,
    Motors,
    PacketC2H,
    PacketH2C,
    Ping,
    Pong,
    ProtocolError,
    ProtocolVersionResponse,
    ReadProtocolVersion,
    ReadSoftwareData,
    ResetToUsbBoot,
    SetSpeed,
    Speed,
    StartStream,
)

OUTBOUND_CAPACITY = 8

_T = TypeVar("_T")

StreamConfig = tuple[Motors, timedelta]


class _Signal(Generic[_T]):
    """Holds the latest signalled value until a waiter takes it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._value: _T | None = None

    def signal(self, value: _T) -> None:
        self._value = value
        self._event.set()

    def signaled(self) -> bool:
        return self._event.is_set()

    def try_take(self) -> _T | None:
        """Take the pending value without waiting, or return None."""
        if not self._event.is_set():
            return None
        self._event.clear()
        value, self._value = self._value, None
        return value

    async def wait(self) -> _T:
        while True:
            await self._event.wait()
            value = self.try_take()
            if value is not None:
                return value


class HandlerContext:
    """State shared by one serial link: outgoing packets and stream settings."""

    def __init__(self, board: Board | None, watchdog: SafetyWatchdog) -> None:
        self.board = board
        self.watchdog = watchdog
        self.packets: asyncio.Queue[PacketC2H] = asyncio.Queue(
            maxsize=OUTBOUND_CAPACITY
        )
        self.streams: _Signal[StreamConfig] = _Signal()
        self.boot_requested = asyncio.Event()


async def feed_all_and_handle(
    data: bytes, decoder: PacketDecoder, ctx: HandlerContext
) -> None:
    """Feed a chunk of received bytes to the decoder and handle every packet in it."""
    data = bytes(data)
    while data:
        result = decoder.feed(data)
        if result.status is FeedStatus.CONSUMED:
            return
        if result.status is FeedStatus.OVERFULL:
            await ctx.packets.put(ErrorReport(ErrorKind.DECODING_BUFFER_OVERFLOW))
        elif result.status is FeedStatus.DESER_ERROR:
            await ctx.packets.put(ErrorReport(ErrorKind.DECODING_ERROR))
        else:
            await handle_inbound_packet(ctx, result.packet)
        data = result.remaining


async def handle_inbound_packet(ctx: HandlerContext, packet: PacketH2C) -> None:
    """Act on one host-to-controller packet."""
    match packet:
        case StartStream(motors=motors, interval=interval):
            ctx.streams.signal((motors, interval.as_duration()))
        case SetSpeed(motors=motors, speed=speed):
            if ctx.board is None:
                return
            for motor_id in motors.indices():
                ctx.board[motor_id].set_speed(speed.as_float())
        case Ping(id=ident):
            await ctx.packets.put(Pong(ident))
        case Armed(duration=duration):
            ctx.watchdog.feed(duration.as_duration())
        case Disarmed():
            ctx.watchdog.disable_motors()
        case ResetToUsbBoot():
            ctx.boot_requested.set()
        case ReadProtocolVersion():
            await ctx.packets.put(ProtocolVersionResponse(PROTOCOL_VERSION))
        case ReadSoftwareData():
            await ctx.packets.put(ErrorReport(ErrorKind.UNIMPLEMENTED))
        case _:
            raise ProtocolError(f"not a host-to-controller packet: {packet!r}")


async def send_motor_stream(ctx: HandlerContext, motors: Motors) -> None:
    """Queue a state report for each of the given motors."""
    if ctx.board is None:
        return
    for motor_id in motors.indices():
        motor = ctx.board[motor_id]
        await ctx.packets.put(
            MotorState(
                motor_id=motor_id,
                last_speed=Speed.from_float(motor.last_speed),
                current_draw=CurrentDraw.from_amps(motor.current_draw()),
                is_fault=motor.is_fault,
                is_enabled=motor.armed,
            )
        )


async def stream_motor_data(ctx: HandlerContext) -> None:
    """Report motor state at the most recently requested interval, forever."""
    motors = Motors(0)
    interval: timedelta | None = None

    while True:
        pending = ctx.streams.try_take()
        if pending is not None:
            motors, interval = pending
            continue
        timeout = None if interval is None else interval.total_seconds()
        try:
            motors, interval = await asyncio.wait_for(ctx.streams.wait(), timeout)
        except asyncio.TimeoutError:
            await send_motor_stream(ctx, motors)