# dcmotorctl

Talk to a four-channel DC motor controller over its USB serial port, and
run a software model of the controller's own packet handling, motor
drivers, current sensing and arming watchdog.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Command line

```
dcmotorctl [--port PORT]
```

Opens the given serial port at 115200 baud. Without `--port` it uses the
first port whose USB descriptor shows a motor controller (vendor `0xC0DE`,
product `0xCAFE`, manufacturer "Night Owls", product "DC Motor
Controller"). It then sends a short session:

1. `StartStream` for motor 0 every 500 ms,
2. `Ping(42)`,
3. `ReadProtocolVersion`,
4. `Armed` for 1000 ms,
5. `SetSpeed` of 0.5 on all four motors,

and prints every packet the controller sends back as `Got packet: ...`.
It runs until the controller's stream ends or it is interrupted with
Ctrl-C. It exits with status 1 if no controller is found or the port
cannot be opened.

## Modules

### `dcmotorctl.protocol`

Packet types and their binary payloads. `PROTOCOL_VERSION` is 2.

- Value types: `Motors` (an `IntFlag` with `MOT0`…`MOT3`; `indices()`
  lists the motor numbers set), `Speed` (`from_float` clamps -1.0…1.0 onto
  the i16 range, `as_float` reverses it), `CurrentDraw` (`from_amps` maps
  0…3 A onto 0…65534, a negative reading becomes 65535 meaning "no
  reading", and `as_amps` returns -1.0 for it), `Interval`
  (`from_duration` keeps whole milliseconds in 16 bits, `as_duration`
  returns a `timedelta`).
- Host to controller: `ResetToUsbBoot`, `ReadProtocolVersion`, `Ping`,
  `ReadSoftwareData`, `StartStream`, `SetSpeed`, `Armed`, `Disarmed`.
- Controller to host: `ProtocolVersionResponse`, `ErrorReport` (with an
  `ErrorKind`), `Pong`, `SoftwareDataResponse`, `MotorState`.
- `encode_h2c` / `decode_h2c` and `encode_c2h` / `decode_c2h` convert
  packets to and from payload bytes: a varint variant tag, one byte for
  `u8` and `bool` fields, LEB128 varints for `u16`, zigzag varints for
  `i16`. Bad input raises `ProtocolError` (a `ValueError`). An unknown
  error kind decodes as `ErrorKind.UNKNOWN`.

### `dcmotorctl.framing`

Every frame on the wire is the payload followed by its CRC-16/USB
(little-endian), COBS-encoded and terminated by a zero byte.

- `crc16_usb`, `cobs_encode`, `cobs_decode`.
- `encode_frame` / `decode_frame` add and check the framing;
  `decode_frame` raises `FrameError` on bad COBS data or a checksum
  mismatch.
- `encode_packet` serializes and frames a packet of either direction and
  raises `FrameError` if the frame exceeds 128 bytes.
- `PacketDecoder(parse, capacity=128)` accumulates arbitrary chunks.
  Each `feed(data)` returns a `FeedResult` whose `status` is a
  `FeedStatus`: `CONSUMED` (all input buffered), `SUCCESS` (with
  `packet`), `DESER_ERROR` (the frame failed to decode or parse) or
  `OVERFULL` (the frame did not fit). `remaining` holds the input after
  the frame, to be fed next. `reset()` drops a partial frame.

```python
from dcmotorctl.framing import FeedStatus, PacketDecoder, encode_packet
from dcmotorctl.protocol import Ping, decode_h2c

decoder = PacketDecoder(decode_h2c)
result = decoder.feed(encode_packet(Ping(7)))
assert result.status is FeedStatus.SUCCESS and result.packet == Ping(7)
```

### `dcmotorctl.host`

- `DcMotorController.enumerate()` lists the serial port names of attached
  controllers; `DcMotorController.open(name=None)` opens one, raising
  `ControllerNotFound` when none is attached.
- `send(packet)` writes a host packet; `receive()` blocks for the next
  controller packet, returns `None` at end of stream, and raises
  `ValueError` for a malformed frame (which is dropped).
- `start(inbound, outbound)` is a coroutine that moves received packets
  onto the `inbound` `asyncio.Queue` and sends packets taken from
  `outbound`; it stops at end of stream or when `None` is taken from
  `outbound`.
- The controller is a context manager; `close()` closes the port.
- `DcMotorControllerCodec` does the frame splitting and encoding on its own.

```python
from dcmotorctl.host import DcMotorController
from dcmotorctl.protocol import Ping, Pong

with DcMotorController.open() as controller:
    controller.send(Ping(id=42))
    reply = controller.receive()
    if isinstance(reply, Pong):
        print("pong", reply.id)
```

### `dcmotorctl.device`

- `adc_to_amps(raw)` converts a 12-bit current-sense sample to amps.
- `CurrentMonitor.update(raw_samples)` stores four samples indexed by ADC
  channel (motors 0–3 read channels 2, 0, 3, 1); `reading(motor_id)`
  returns the latest amps or -1.0 before the first sample.
- `MotorDriver` tracks duty, direction, enable and fault. `set_speed`
  only drives while armed; `set_armed` stops the output whenever the
  armed state changes. `current_draw()` reads the monitor.
- `Board(max_duty=0xFFFF)` holds four drivers and one monitor, indexable
  and iterable; `set_all_armed(armed)`.
- `SafetyWatchdog(board)`: `feed(duration)` arms the motors until the
  duration lapses without another feed; `disable_motors()` disarms them;
  `run()` is the coroutine that enforces this.

### `dcmotorctl.handler`

- `HandlerContext(board, watchdog)` holds an outbound packet queue
  (capacity 8), the stream settings and a `boot_requested` event.
- `feed_all_and_handle(data, decoder, ctx)` decodes a received chunk and
  handles every packet in it, queueing `ErrorReport`s for overflows and
  bad frames.
- `handle_inbound_packet(ctx, packet)` answers `Ping` with `Pong`,
  `ReadProtocolVersion` with the version, `ReadSoftwareData` with an
  `UNIMPLEMENTED` error, applies `SetSpeed`, feeds or disables the
  watchdog, records `StartStream` settings and sets `boot_requested` for
  `ResetToUsbBoot`.
- `send_motor_stream(ctx, motors)` queues a `MotorState` per motor;
  `stream_motor_data(ctx)` repeats it at the last requested interval.

### `dcmotorctl.i2c`

`handle_i2c_message(msg, ctx)` takes one I2C write and returns the
response bytes (big-endian fields, `I2cCommand` as first byte):

| Command | Request | Response |
|---|---|---|
| `SET_SPEED` (0) | motors `u8`, speed `i16` | count, then per motor: id `u8`, current `u16`, fault `u8` |
| `READ_MOTOR` (1) | motors `u8` | count, then per motor: id `u8`, speed `i16`, current `u16`, fault `u8` |
| `ARM` (2) | milliseconds `u16` (0 disarms) | empty |

An unknown command gives an empty response; a message too short for its
command raises `ValueError`. `I2C_ADDRESS` is `0x42`.

## What this package does not do

The controller-side modules are a model driven by your own code: they do
not touch GPIO, PWM or ADC hardware, do not reboot anything on
`ResetToUsbBoot` (they only set an event), and do not listen on a serial
port or an I2C bus themselves. You pass received bytes to
`feed_all_and_handle` or `handle_i2c_message` and take outgoing packets
from `HandlerContext.packets`.