"""Controller-side model of the motor drivers, current sensing and safety watchdog."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import timedelta

log = logging.getLogger(__name__)

MOTOR_COUNT = 4
ADC_FULL_SCALE = 4095
ADC_REFERENCE_VOLTS = 3.0
SENSE_RESISTOR_OHMS = 2.2e3
SENSE_GAIN_AMPS_PER_AMP = 4.5e-4
DEFAULT_MAX_DUTY = 0xFFFF
_U16_MAX = 0xFFFF

# ADC channel that carries each motor's current sense signal.
PIN_MAP = (2, 0, 3, 1)

_DISARM = math.inf


def adc_to_amps(raw: int) -> float:
    """Convert a raw 12-bit ADC sample from a current sense pin into amps."""
    voltage = raw / ADC_FULL_SCALE * ADC_REFERENCE_VOLTS
    return voltage / SENSE_RESISTOR_OHMS / SENSE_GAIN_AMPS_PER_AMP


class CurrentMonitor:
    """Latest current reading for each motor."""

    def __init__(self) -> None:
        self._readings: list[float | None] = [None] * MOTOR_COUNT

    def update(self, raw_samples: Sequence[int]) -> None:
        """Store one round of raw samples, indexed by ADC channel."""
        if len(raw_samples) != MOTOR_COUNT:
            raise ValueError(
                f"expected {MOTOR_COUNT} samples, got {len(raw_samples)}"
            )
        self._readings = [adc_to_amps(raw_samples[channel]) for channel in PIN_MAP]

    def reading(self, motor_id: int) -> float:
        """Latest current of a motor in amps, or -1.0 before the first sample."""
        if not 0 <= motor_id < MOTOR_COUNT:
            raise IndexError(f"no motor {motor_id}")
        value = self._readings[motor_id]
        return -1.0 if value is None else value


@dataclass(eq=False)
class MotorDriver:
    """One H-bridge channel: PWM duty, direction, enable line and fault input."""

    motor_id: int
    max_duty: int
    monitor: CurrentMonitor
    is_fault: bool = False
    armed: bool = field(default=False, init=False)
    last_speed: float = field(default=0.0, init=False)
    duty: int = field(default=0, init=False)
    phase: bool = field(default=False, init=False)
    enable: bool = field(default=False, init=False)

    def set_speed(self, speed: float) -> None:
        """Drive at a fraction of full scale; ignored (and stopped) while disarmed."""
        if not self.armed:
            self.duty = 0
            self.last_speed = 0.0
            return
        self.set_armed(self.armed)

        scaled = abs(speed) * self.max_duty
        if math.isnan(scaled):
            duty = 0
        elif scaled >= _U16_MAX:
            duty = _U16_MAX
        else:
            duty = int(scaled)

        self.phase = speed >= 0.0
        self.duty = duty
        self.last_speed = speed

    def set_armed(self, armed: bool) -> None:
        """Enable or disable the driver, stopping the output on any change."""
        if armed != self.armed:
            self.duty = 0
            self.last_speed = 0.0
        self.enable = armed
        self.armed = armed

    def current_draw(self) -> float:
        """Latest current draw in amps, or -1.0 when none has been measured."""
        return self.monitor.reading(self.motor_id)


class Board:
    """The four motor drivers sharing one current monitor."""

    def __init__(self, max_duty: int = DEFAULT_MAX_DUTY) -> None:
        if not 0 < max_duty <= _U16_MAX:
            raise ValueError(f"max duty {max_duty} is out of range")
        self.monitor = CurrentMonitor()
        self.motors = [
            MotorDriver(motor_id, max_duty, self.monitor)
            for motor_id in range(MOTOR_COUNT)
        ]

    def __getitem__(self, motor_id: int) -> MotorDriver:
        return self.motors[motor_id]

    def __iter__(self) -> Iterator[MotorDriver]:
        return iter(self.motors)

    def __len__(self) -> int:
        return len(self.motors)

    def set_all_armed(self, armed: bool) -> None:
        for motor in self.motors:
            motor.set_armed(armed)


class SafetyWatchdog:
    """Keeps the motors armed only while the host keeps feeding the watchdog."""

    def __init__(self, board: Board) -> None:
        self.board = board
        self._event = asyncio.Event()
        self._deadline: float | None = None

    def _signal(self, deadline: float) -> None:
        self._deadline = deadline
        self._event.set()

    async def _wait(self) -> float:
        await self._event.wait()
        self._event.clear()
        deadline, self._deadline = self._deadline, None
        assert deadline is not None
        return deadline

    def feed(self, duration: timedelta) -> None:
        """Arm the motors until ``duration`` from now."""
        self._signal(time.monotonic() + duration.total_seconds())

    def disable_motors(self) -> None:
        """Disarm the motors at the watchdog's next check."""
        self._signal(_DISARM)

    async def run(self) -> None:
        """Serve feed and disable requests forever."""
        while True:
            deadline = await self._wait()

            if deadline == _DISARM:
                self.board.set_all_armed(False)
                continue

            if deadline > time.monotonic():
                self.board.set_all_armed(True)

            delay = deadline - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)

            if not self._event.is_set():
                log.warning("Safety watch dog deadline elapsed")
                self.board.set_all_armed(False)