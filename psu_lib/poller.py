"""Periodic composite measurement polling."""

import copy
import logging
import threading
from typing import Callable, Optional, Tuple

from psu_lib import protocol
from psu_lib.chart import PathVertex, build_path
from psu_lib.driver import CommandDriver
from psu_lib.errors import InvalidResponse
from psu_lib.models import DeviceStatus, ModeThresholds, PollUpdate
from psu_lib.parsing import Sanitizer, default_sanitizer, parse_measurement
from psu_lib.ring_buffer import ChannelHistory
from psu_lib.scheduler import RepeatingTask

logger = logging.getLogger(__name__)

DriverSource = Callable[[], Optional[CommandDriver]]


class Poller:
    """Issues MEAS:ALL? at a fixed cadence and feeds the chart history.

    A failed tick leaves the displayed readings alone but still pushes the
    last-known sample into both channels, so the history advances at a
    steady rate through communication drop-outs.
    """

    def __init__(
        self,
        driver_source: DriverSource,
        status: DeviceStatus,
        history: ChannelHistory,
        thresholds: Optional[ModeThresholds] = None,
        sanitizer: Optional[Sanitizer] = None,
        on_update: Optional[Callable[[PollUpdate], None]] = None,
        status_lock: Optional[threading.Lock] = None,
        chart_width: float = 100.0,
        chart_height: float = 100.0,
    ) -> None:
        """Initialize poller (does not start automatically).

        Args:
            driver_source: Returns the live driver, or None while disconnected
            status: Device status updated in place on each good reply
            history: Paired history advanced on every connected tick
            thresholds: Constant-current heuristic. Defaults to 5% / 10 mA.
            sanitizer: Reply cleanup before parsing
            on_update: Called with a PollUpdate after each connected tick
            status_lock: Lock guarding status, shared with the session
            chart_width: Chart coordinate width
            chart_height: Chart coordinate height
        """
        self._driver_source = driver_source
        self._status = status
        self._history = history
        self._thresholds = thresholds or ModeThresholds()
        self._sanitizer = sanitizer or default_sanitizer
        self._on_update = on_update
        self._status_lock = status_lock or threading.Lock()
        self._chart_width = chart_width
        self._chart_height = chart_height

        self._last_sample: Tuple[float, float] = (0.0, 0.0)
        self._task: Optional[RepeatingTask] = None

    @property
    def thresholds(self) -> ModeThresholds:
        return self._thresholds

    @property
    def last_sample(self) -> Tuple[float, float]:
        """Most recent good (voltage, current), (0.0, 0.0) before any."""
        return self._last_sample

    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running()

    def start(self, interval_s: float = protocol.DEFAULT_POLL_INTERVAL_S) -> float:
        """Start polling, restarting if already running.

        Args:
            interval_s: Requested cadence; raised to 0.2 s if faster

        Returns:
            Cadence actually used
        """
        if interval_s < protocol.MIN_POLL_INTERVAL_S:
            logger.warning(
                f"Poll interval {interval_s}s below floor, using {protocol.MIN_POLL_INTERVAL_S}s"
            )
            interval_s = protocol.MIN_POLL_INTERVAL_S

        self.stop()
        self._task = RepeatingTask("Poller", self.tick, interval_s)
        self._task.start()
        logger.info(f"Auto-poll started every {interval_s}s")
        return interval_s

    def stop(self) -> None:
        """Cancel future ticks. Idempotent."""
        if self._task is not None:
            self._task.stop()
            self._task = None
            logger.info("Auto-poll stopped")

    def reset(self) -> None:
        """Forget the last-known sample."""
        self._last_sample = (0.0, 0.0)

    def tick(self) -> Optional[PollUpdate]:
        """Run one poll cycle.

        Returns:
            The published update, or None if disconnected
        """
        driver = self._driver_source()
        if driver is None:
            return None

        reply = driver.execute(protocol.CMD_READ_ALL)

        measurement = None
        if reply is None:
            logger.warning("No response to composite query, repeating last sample")
        else:
            try:
                measurement = parse_measurement(reply, self._sanitizer)
            except InvalidResponse as e:
                logger.warning(f"Failed to parse measurement: {e}")

        with self._status_lock:
            if measurement is not None:
                self._status.apply_measurement(measurement, self._thresholds)
                self._last_sample = (measurement.voltage, measurement.current)
            self._history.push(*self._last_sample)
            status = copy.copy(self._status)

        voltage_path, current_path = self.chart()
        update = PollUpdate(
            ok=measurement is not None,
            status=status,
            voltage_path=voltage_path,
            current_path=current_path,
        )

        if self._on_update is not None:
            self._on_update(update)
        return update

    def chart(self) -> Tuple[list[PathVertex], list[PathVertex]]:
        """Current (voltage, current) chart paths."""
        voltages, currents = self._history.snapshot()
        return (
            build_path(voltages, self._chart_width, self._chart_height),
            build_path(currents, self._chart_width, self._chart_height),
        )
