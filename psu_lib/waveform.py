"""Square-wave voltage loop alternating between two setpoints."""

import logging
from typing import Optional, Union

from psu_lib import protocol
from psu_lib.parsing import parse_number
from psu_lib.poller import DriverSource
from psu_lib.scheduler import RepeatingTask

logger = logging.getLogger(__name__)


class WaveformLoop:
    """Alternates VOLT commands between setpoints A and B.

    Each tick flips a flag and sends the selected setpoint. The flag starts
    False, so the first command sent is A. Set commands are fire-and-forget;
    nothing is read back.
    """

    def __init__(self, driver_source: DriverSource) -> None:
        self._driver_source = driver_source
        self._volt_a = 0.0
        self._volt_b = 0.0
        self._state = False
        self._task: Optional[RepeatingTask] = None

    @property
    def targets(self) -> tuple[float, float]:
        return self._volt_a, self._volt_b

    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running()

    def start(
        self,
        volt_a: Union[str, float],
        volt_b: Union[str, float],
        interval_s: float,
    ) -> float:
        """Start alternating, restarting if already running.

        Args:
            volt_a: First setpoint; text is parsed with a 0.0 fallback
            volt_b: Second setpoint
            interval_s: Time between commands

        Returns:
            Cadence actually used
        """
        if interval_s < protocol.MIN_WAVEFORM_INTERVAL_S:
            logger.warning(
                f"Loop interval {interval_s}s below floor, using {protocol.MIN_WAVEFORM_INTERVAL_S}s"
            )
            interval_s = protocol.MIN_WAVEFORM_INTERVAL_S

        self.stop()
        self._volt_a = parse_number(volt_a)
        self._volt_b = parse_number(volt_b)
        self._state = False

        self._task = RepeatingTask("WaveformLoop", self.tick, interval_s)
        self._task.start()
        logger.info(f"Loop start: {self._volt_a}V <-> {self._volt_b}V, every {interval_s}s")
        return interval_s

    def stop(self) -> None:
        """Cancel future ticks. Idempotent."""
        if self._task is not None:
            self._task.stop()
            self._task = None
            logger.info("Loop stopped")

    def tick(self) -> Optional[str]:
        """Flip and send the selected setpoint.

        Returns:
            The command issued, or None if disconnected
        """
        self._state = not self._state
        target = self._volt_a if self._state else self._volt_b

        driver = self._driver_source()
        if driver is None:
            return None

        command = protocol.make_set_voltage_cmd(target)
        driver.execute(command)
        logger.debug(f"Auto set: {target} V")
        return command
