import asyncio
import math
from datetime import timedelta

import pytest

from dcmotorctl.device import (
    Board,
    CurrentMonitor,
    MotorDriver,
    SafetyWatchdog,
    adc_to_amps,
)


def test_adc_zero_is_zero_amps():
    assert adc_to_amps(0) == 0.0


def test_adc_is_linear():
    assert adc_to_amps(4000) == pytest.approx(2 * adc_to_amps(2000))
    assert adc_to_amps(4095) > adc_to_amps(4094)


def test_monitor_without_samples_reports_no_reading():
    monitor = CurrentMonitor()
    assert [monitor.reading(i) for i in range(4)] == [-1.0] * 4


def test_monitor_maps_channels_to_motors():
    monitor = CurrentMonitor()
    samples = [100, 200, 300, 400]
    monitor.update(samples)
    assert monitor.reading(0) == adc_to_amps(300)
    assert monitor.reading(1) == adc_to_amps(100)
    assert monitor.reading(2) == adc_to_amps(400)
    assert monitor.reading(3) == adc_to_amps(200)


def test_monitor_rejects_wrong_sample_count():
    with pytest.raises(ValueError):
        CurrentMonitor().update([1, 2, 3])


def test_monitor_rejects_unknown_motor():
    with pytest.raises(IndexError):
        CurrentMonitor().reading(4)


def test_speed_ignored_while_disarmed():
    motor = MotorDriver(0, 1000, CurrentMonitor())
    motor.set_speed(0.5)
    assert motor.duty == 0
    assert motor.last_speed == 0.0
    assert motor.armed is False


def test_speed_sets_duty_and_direction_when_armed():
    motor = MotorDriver(0, 1000, CurrentMonitor())
    motor.set_armed(True)
    motor.set_speed(0.5)
    assert motor.duty == 500
    assert motor.phase is True
    assert motor.last_speed == 0.5
    motor.set_speed(-0.25)
    assert motor.duty == 250
    assert motor.phase is False
    assert motor.last_speed == -0.25


def test_duty_saturates():
    motor = MotorDriver(0, 0xFFFF, CurrentMonitor())
    motor.set_armed(True)
    motor.set_speed(math.inf)
    assert motor.duty == 0xFFFF
    motor.set_speed(math.nan)
    assert motor.duty == 0


def test_arming_change_stops_output():
    motor = MotorDriver(1, 1000, CurrentMonitor())
    motor.set_armed(True)
    motor.set_speed(1.0)
    motor.set_armed(True)
    assert motor.duty == 1000
    motor.set_armed(False)
    assert motor.duty == 0
    assert motor.last_speed == 0.0
    assert motor.enable is False


def test_motor_current_draw_follows_monitor():
    board = Board(1000)
    assert board[2].current_draw() == -1.0
    board.monitor.update([10, 20, 30, 40])
    assert board[2].current_draw() == adc_to_amps(40)


def test_board_arms_all():
    board = Board()
    board.set_all_armed(True)
    assert [m.armed for m in board] == [True] * 4
    assert [m.motor_id for m in board] == [0, 1, 2, 3]
    board.set_all_armed(False)
    assert not any(m.enable for m in board)


def test_board_rejects_bad_duty():
    with pytest.raises(ValueError):
        Board(0)


@pytest.mark.asyncio
async def test_watchdog_arms_then_times_out():
    board = Board()
    watchdog = SafetyWatchdog(board)
    task = asyncio.create_task(watchdog.run())
    try:
        watchdog.feed(timedelta(milliseconds=80))
        await asyncio.sleep(0.02)
        assert all(m.armed for m in board)
        await asyncio.sleep(0.15)
        assert not any(m.armed for m in board)
    finally:
        task.cancel()


@pytest.mark.asyncio
async def test_watchdog_stays_armed_when_fed():
    board = Board()
    watchdog = SafetyWatchdog(board)
    task = asyncio.create_task(watchdog.run())
    try:
        watchdog.feed(timedelta(milliseconds=80))
        await asyncio.sleep(0.05)
        watchdog.feed(timedelta(milliseconds=200))
        await asyncio.sleep(0.08)
        assert all(m.armed for m in board)
    finally:
        task.cancel()


@pytest.mark.asyncio
async def test_watchdog_disable_disarms():
    board = Board()
    watchdog = SafetyWatchdog(board)
    task = asyncio.create_task(watchdog.run())
    try:
        watchdog.feed(timedelta(milliseconds=40))
        await asyncio.sleep(0.01)
        assert all(m.armed for m in board)
        watchdog.disable_motors()
        await asyncio.sleep(0.1)
        assert not any(m.armed for m in board)
    finally:
        task.cancel()