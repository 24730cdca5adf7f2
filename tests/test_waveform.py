"""Tests for the two-setpoint voltage loop."""

import time

import pytest

from fakes.fake_serial import FakePowerSupply
from psu_lib.driver import CommandDriver
from psu_lib.transport import Transport
from psu_lib.waveform import WaveformLoop


@pytest.fixture
def fake_serial():
    return FakePowerSupply(timeout=0.01)


@pytest.fixture
def driver(fake_serial):
    return CommandDriver(Transport(fake_serial), response_timeout_s=0.05)


@pytest.fixture
def loop(driver):
    wl = WaveformLoop(lambda: driver)
    yield wl
    wl.stop()


def test_ticks_alternate_starting_with_a(loop, fake_serial) -> None:
    loop.start("5", "10", 10.0)
    loop.stop()

    sent = [loop.tick() for _ in range(4)]

    assert sent == ["VOLT 5.00", "VOLT 10.00", "VOLT 5.00", "VOLT 10.00"]
    assert fake_serial.commands == sent
    assert fake_serial.voltage_setpoint == 10.0


def test_timed_loop(loop, fake_serial) -> None:
    loop.start(5.0, 10.0, 0.1)
    time.sleep(0.35)
    loop.stop()

    volts = [c for c in fake_serial.commands if c.startswith("VOLT")]
    assert len(volts) >= 2
    assert volts[:2] == ["VOLT 5.00", "VOLT 10.00"]
    # Set commands are fire-and-forget
    assert not any(c.endswith("?") for c in fake_serial.commands)


def test_no_commands_after_stop(loop, fake_serial) -> None:
    loop.start(1.0, 2.0, 0.05)
    time.sleep(0.2)
    loop.stop()
    count = len(fake_serial.commands)

    time.sleep(0.15)
    assert len(fake_serial.commands) == count
    assert not loop.is_running()


def test_interval_floor(loop) -> None:
    assert loop.start(1.0, 2.0, 0.001) == 0.05


def test_unparseable_setpoint_becomes_zero(loop) -> None:
    loop.start("abc", "3.3", 10.0)
    assert loop.targets == (0.0, 3.3)


def test_restart_resets_phase(loop) -> None:
    loop.start(1.0, 2.0, 10.0)
    loop.tick()
    loop.start(7.0, 8.0, 10.0)
    assert loop.tick() == "VOLT 7.00"


def test_disconnected_tick_sends_nothing() -> None:
    loop = WaveformLoop(lambda: None)
    loop.start(1.0, 2.0, 10.0)
    try:
        assert loop.tick() is None
    finally:
        loop.stop()
