"""Host-side access to a motor controller over its USB serial port."""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import timedelta
from typing import Any, BinaryIO

import serial
from serial.tools import list_ports

from .framing import (
    MAX_FRAME_SIZE,
    FrameError,
    cobs_decode,
    decode_frame,
    encode_packet,
)
from .protocol import (
    H2C_PACKET_TYPES,
    Armed,
    Interval,
    Motors,
    PacketC2H,
    PacketH2C,
    Ping,
    ProtocolError,
    ReadProtocolVersion,
    SetSpeed,
    Speed,
    StartStream,
    decode_c2h,
)

log = logging.getLogger(__name__)

USB_VID = 0xC0DE
USB_PID = 0xCAFE
USB_MANUFACTURER = "Night Owls"
USB_PRODUCT = "DC Motor Controller"
BAUD_RATE = 115200


class ControllerNotFound(LookupError):
    """Raised when no motor controller is attached."""


class DcMotorControllerCodec:
    """Splits a byte stream into controller packets and frames host packets."""

    def decode(self, buffer: bytearray) -> PacketC2H | None:
        """Take one frame off the front of ``buffer`` and parse it.

        Returns ``None`` while no complete frame is buffered. The frame's
        bytes are removed from ``buffer`` even when parsing fails.
        """
        end = buffer.find(0)
        if end < 0:
            return None
        frame = bytes(buffer[: end + 1])
        del buffer[: end + 1]
        if len(cobs_decode(frame)) > MAX_FRAME_SIZE:
            raise FrameError("decoded frame exceeds the receive buffer")
        return decode_c2h(decode_frame(frame))

    def encode(self, packet: PacketH2C) -> bytes:
        """Frame a host-to-controller packet for the wire."""
        if not isinstance(packet, H2C_PACKET_TYPES):
            raise ProtocolError(f"not a host-to-controller packet: {packet!r}")
        return encode_packet(packet)


class DcMotorController:
    """A connection to one motor controller over a byte stream."""

    def __init__(self, port: BinaryIO | Any) -> None:
        self._port = port
        self._codec = DcMotorControllerCodec()
        self._buffer = bytearray()

    @classmethod
    def enumerate(cls) -> list[str]:
        """Names of the serial ports that belong to motor controllers."""
        return [
            port.device
            for port in list_ports.comports()
            if port.vid == USB_VID
            and port.pid == USB_PID
            and port.manufacturer == USB_MANUFACTURER
            and port.product == USB_PRODUCT
        ]

    @classmethod
    def open(cls, name: str | None = None) -> DcMotorController:
        """Open the named port, or the first controller found when ``name`` is None."""
        if name is None:
            names = cls.enumerate()
            if not names:
                raise ControllerNotFound("No motor controller was found")
            name = names[0]
        return cls(serial.Serial(name, baudrate=BAUD_RATE))

    def send(self, packet: PacketH2C) -> None:
        """Write one packet to the controller."""
        self._port.write(self._codec.encode(packet))
        flush = getattr(self._port, "flush", None)
        if flush is not None:
            flush()

    def receive(self) -> PacketC2H | None:
        """Block until a packet arrives; ``None`` marks the end of the stream.

        A malformed frame raises ``ValueError`` and is dropped, so the next
        call continues with the following frame.
        """
        while True:
            packet = self._codec.decode(self._buffer)
            if packet is not None:
                return packet
            chunk = self._port.read(1)
            if not chunk:
                return None
            waiting = getattr(self._port, "in_waiting", 0)
            if waiting:
                chunk += self._port.read(waiting)
            self._buffer += chunk

    async def start(
        self,
        inbound: asyncio.Queue[PacketC2H],
        outbound: asyncio.Queue[PacketH2C | None],
    ) -> None:
        """Pump packets between the controller and the two queues.

        Received packets are put on ``inbound``; packets taken from
        ``outbound`` are sent. Stops at the end of the controller stream or
        when ``None`` is taken from ``outbound``.
        """

        async def read_loop() -> None:
            while True:
                try:
                    packet = await asyncio.to_thread(self.receive)
                except ValueError as err:
                    log.warning("Error decoding packet: %s", err)
                    continue
                if packet is None:
                    log.info("end of motor controller stream")
                    return
                await inbound.put(packet)

        async def write_loop() -> None:
            while True:
                packet = await outbound.get()
                if packet is None:
                    log.info("out channel disconnected")
                    return
                try:
                    await asyncio.to_thread(self.send, packet)
                except (ValueError, OSError) as err:
                    log.error("Error sending message: %s", err)

        tasks = {
            asyncio.create_task(read_loop()),
            asyncio.create_task(write_loop()),
        }
        try:
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            task.result()

    def close(self) -> None:
        self._port.close()

    def __enter__(self) -> DcMotorController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _initial_packets() -> list[PacketH2C]:
    every_motor = Motors.MOT0 | Motors.MOT1 | Motors.MOT2 | Motors.MOT3
    return [
        StartStream(Motors.MOT0, Interval.from_duration(timedelta(milliseconds=500))),
        Ping(42),
        ReadProtocolVersion(),
        Armed(Interval.from_duration(timedelta(milliseconds=1000))),
        SetSpeed(every_motor, Speed.from_float(0.5)),
    ]


async def _run(controller: DcMotorController) -> None:
    inbound: asyncio.Queue[PacketC2H] = asyncio.Queue()
    outbound: asyncio.Queue[PacketH2C | None] = asyncio.Queue()
    for packet in _initial_packets():
        outbound.put_nowait(packet)

    async def show() -> None:
        while True:
            packet = await inbound.get()
            print(f"Got packet: {packet!r}", flush=True)

    printer = asyncio.create_task(show())
    try:
        await controller.start(inbound, outbound)
    finally:
        printer.cancel()
        await asyncio.gather(printer, return_exceptions=True)


def main(argv: list[str] | None = None) -> int:
    """Connect to a controller, start streaming and arm all motors at half speed."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--port", help="serial port; the first controller found by default")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    try:
        controller = DcMotorController.open(args.port)
    except ControllerNotFound as err:
        print(f"error: {err}")
        return 1
    except serial.SerialException as err:
        print(f"error: {err}")
        return 1

    with controller:
        try:
            asyncio.run(_run(controller))
        except KeyboardInterrupt:
            pass
    return 0