import asyncio
import struct

import pytest

from dcmotorctl.device import Board, SafetyWatchdog
from dcmotorctl.handler import HandlerContext
from dcmotorctl.i2c import I2cCommand, handle_i2c_message
from dcmotorctl.protocol import CurrentDraw, Speed


def make_ctx(with_board=True):
    board = Board()
    return HandlerContext(board if with_board else None, SafetyWatchdog(board))


@pytest.mark.asyncio
async def test_set_speed_updates_motors_and_reports_them():
    ctx = make_ctx()
    ctx.board.set_all_armed(True)
    msg = bytes([I2cCommand.SET_SPEED, 0b0011]) + struct.pack(">h", 16383)
    response = await handle_i2c_message(msg, ctx)

    assert response[0] == 2
    assert len(response) == 1 + 4 * response[0]
    ids = [response[1], response[5]]
    assert ids == [0, 1]
    assert ctx.board[0].last_speed == Speed(16383).as_float()
    assert ctx.board[1].last_speed == Speed(16383).as_float()
    assert ctx.board[2].last_speed == 0.0
    current = struct.unpack(">H", response[2:4])[0]
    assert current == CurrentDraw.from_amps(-1.0).value
    assert response[4] == 0


@pytest.mark.asyncio
async def test_set_speed_does_not_queue_packets():
    ctx = make_ctx()
    msg = bytes([I2cCommand.SET_SPEED, 0b0001]) + struct.pack(">h", 100)
    await handle_i2c_message(msg, ctx)
    assert ctx.packets.empty()


@pytest.mark.asyncio
async def test_read_motor_reports_speed_current_and_fault():
    ctx = make_ctx()
    ctx.board.set_all_armed(True)
    ctx.board[2].set_speed(-0.25)
    ctx.board[2].is_fault = True
    ctx.board.monitor.update([0, 0, 0, 0])

    response = await handle_i2c_message(bytes([I2cCommand.READ_MOTOR, 0b0100]), ctx)

    assert response[0] == 1
    assert len(response) == 1 + 6 * response[0]
    motor_id, speed, current, fault = struct.unpack(">BhHB", response[1:])
    assert motor_id == 2
    assert speed == Speed.from_float(-0.25).value
    assert current == CurrentDraw.from_amps(0.0).value
    assert fault == 1


@pytest.mark.asyncio
async def test_read_motor_ignores_unknown_bits():
    ctx = make_ctx()
    response = await handle_i2c_message(bytes([I2cCommand.READ_MOTOR, 0xF1]), ctx)
    assert response[0] == 1
    assert response[1] == 0


@pytest.mark.asyncio
async def test_without_board_reports_zero_motors():
    ctx = make_ctx(with_board=False)
    response = await handle_i2c_message(bytes([I2cCommand.READ_MOTOR, 0b1111]), ctx)
    assert response == b"\x00"
    msg = bytes([I2cCommand.SET_SPEED, 0b1111]) + struct.pack(">h", 5)
    assert await handle_i2c_message(msg, ctx) == b"\x00"


@pytest.mark.asyncio
async def test_unknown_command_has_empty_response():
    ctx = make_ctx()
    assert await handle_i2c_message(bytes([9, 1, 2]), ctx) == b""


@pytest.mark.asyncio
async def test_empty_message_raises():
    ctx = make_ctx()
    with pytest.raises(ValueError):
        await handle_i2c_message(b"", ctx)


@pytest.mark.asyncio
async def test_short_set_speed_raises():
    ctx = make_ctx()
    with pytest.raises(ValueError):
        await handle_i2c_message(bytes([I2cCommand.SET_SPEED, 0b0001, 0x00]), ctx)


@pytest.mark.asyncio
async def test_arm_with_duration_arms_motors():
    ctx = make_ctx()
    task = asyncio.create_task(ctx.watchdog.run())
    try:
        msg = bytes([I2cCommand.ARM]) + struct.pack(">H", 1000)
        response = await handle_i2c_message(msg, ctx)
        await asyncio.sleep(0.01)
        assert response == b""
        assert all(motor.armed for motor in ctx.board)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_arm_with_zero_duration_disarms():
    ctx = make_ctx()
    ctx.board.set_all_armed(True)
    task = asyncio.create_task(ctx.watchdog.run())
    try:
        msg = bytes([I2cCommand.ARM]) + struct.pack(">H", 0)
        response = await handle_i2c_message(msg, ctx)
        await asyncio.sleep(0.01)
        assert response == b""
        assert not any(motor.armed for motor in ctx.board)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)