"""Connection session for an SCPI power supply with polling and waveform loop."""

import copy
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple, Union

from psu_lib import protocol
from psu_lib.chart import PathVertex
from psu_lib.driver import CommandDriver
from psu_lib.errors import InvalidResponse, PortOpenError, ResponseTimeout, SerialIOError
from psu_lib.models import DeviceStatus, ModeThresholds, PollUpdate, SessionState
from psu_lib.parsing import (
    Sanitizer,
    default_sanitizer,
    parse_float_reply,
    parse_number,
    parse_output_state,
)
from psu_lib.poller import Poller
from psu_lib.ring_buffer import ChannelHistory
from psu_lib.transport import SerialLike, Transport
from psu_lib.waveform import WaveformLoop

logger = logging.getLogger(__name__)

STATUS_CONNECTED = "Connected"
STATUS_DISCONNECTED = "Disconnected"

COLOR_CONNECTED = (0, 128, 0)
COLOR_DISCONNECTED = (255, 0, 0)

Setpoint = Union[str, float]


class PowerSupplySession:
    """Disconnected/Connected state machine owning the serial link.

    Owns at most one Transport, plus the Poller and WaveformLoop that share
    it. connect() and disconnect() are the only places a Transport is
    created or released, and every exit from Connected stops both tasks.
    """

    def __init__(
        self,
        thresholds: Optional[ModeThresholds] = None,
        history_capacity: int = protocol.HISTORY_CAPACITY,
        sanitizer: Optional[Sanitizer] = None,
        on_update: Optional[Callable[[PollUpdate], None]] = None,
        response_timeout_s: float = protocol.RESPONSE_TIMEOUT_S,
    ) -> None:
        """Initialize session in the Disconnected state.

        Args:
            thresholds: Constant-current heuristic for mode display
            history_capacity: Samples kept per chart channel. Default 100.
            sanitizer: Reply cleanup applied before parsing
            on_update: Called after every poll tick with the new readings
            response_timeout_s: Reply window per query. Default 0.5 s.
        """
        self._state = SessionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._driver: Optional[CommandDriver] = None
        self._response_timeout_s = response_timeout_s
        self._sanitizer = sanitizer or default_sanitizer

        self._status = DeviceStatus()
        self._status_lock = threading.Lock()
        self._history = ChannelHistory(capacity=history_capacity)

        self._poller = Poller(
            driver_source=self._active_driver,
            status=self._status,
            history=self._history,
            thresholds=thresholds,
            sanitizer=self._sanitizer,
            on_update=on_update,
            status_lock=self._status_lock,
        )
        self._waveform = WaveformLoop(driver_source=self._active_driver)

        # Lock for state transitions
        self._state_lock = threading.RLock()

        self._status_text = STATUS_DISCONNECTED
        self._status_color = COLOR_DISCONNECTED

        # Store connection params for reconnection
        self._last_port: Optional[str] = None
        self._last_baud: int = protocol.DEFAULT_BAUD

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(
        self,
        port: Optional[str] = None,
        baud: int = protocol.DEFAULT_BAUD,
        serial_port: Optional[SerialLike] = None,
        auto_refresh: bool = False,
        poll_interval_s: float = protocol.DEFAULT_POLL_INTERVAL_S,
    ) -> str:
        """Open the link, identify the instrument and read back its state.

        Args:
            port: Serial endpoint name. Required if serial_port not given.
            baud: Baud rate. Default 9600.
            serial_port: Pre-configured serial port object (for testing). If
                        provided, port and baud are ignored.
            auto_refresh: Start the poller once connected
            poll_interval_s: Poller cadence when auto_refresh is set

        Returns:
            Identity string, empty if the instrument did not answer *IDN?

        Raises:
            PortOpenError: If the endpoint cannot be opened
            SerialIOError: If already connected or the identity query
                           cannot be sent
        """
        with self._state_lock:
            if self._state != SessionState.DISCONNECTED:
                raise SerialIOError(f"Already connected (state: {self._state.value})")

            if serial_port is not None:
                transport = Transport(serial_port, port_name=port or "injected")
            elif port is not None:
                try:
                    transport = Transport.open(port, baud, self._response_timeout_s)
                except PortOpenError as e:
                    self._status_text = f"Err: {e}"
                    self._status_color = COLOR_DISCONNECTED
                    logger.error(f"Failed to open {port}: {e}")
                    raise
                self._last_port = port
                self._last_baud = baud
            else:
                raise ValueError("Must provide either 'port' or 'serial_port'")

            driver = CommandDriver(transport, self._response_timeout_s)

            logger.info(f"Connecting to power supply on {transport.port_name}...")
            try:
                identity = driver.exchange(protocol.CMD_IDENTITY) or ""
            except SerialIOError as e:
                transport.close()
                self._status_text = f"Err: {e}"
                logger.error(f"Identity query could not be sent: {e}")
                raise
            except ResponseTimeout:
                logger.warning("No reply to identity query, skipping state resync")
                identity = ""

            self._transport = transport
            self._driver = driver
            with self._status_lock:
                self._status.reset_readings()
                self._status.identity = identity

            if identity:
                self._resync()

            self._state = SessionState.CONNECTED
            self._status_text = STATUS_CONNECTED
            self._status_color = COLOR_CONNECTED
            logger.info(f"Connected. Device: {identity or 'unknown'}")

            if auto_refresh:
                self._poller.start(poll_interval_s)

            return identity

    def disconnect(self) -> None:
        """Release the instrument and return to Disconnected.

        Stops the poller before anything else is sent, then stops the
        waveform loop, restores front-panel control and closes the port.
        Safe to call when already disconnected.
        """
        with self._state_lock:
            self._poller.stop()
            self._waveform.stop()

            if self._state == SessionState.DISCONNECTED:
                return

            logger.info("Disconnecting from power supply...")

            if self._driver is not None:
                self._driver.execute(protocol.CMD_UNLOCK)
                time.sleep(protocol.UNLOCK_SETTLE_S)

            if self._transport is not None:
                try:
                    self._transport.close()
                except Exception as e:
                    logger.warning(f"Error closing port: {e}")

            self._transport = None
            self._driver = None
            self._poller.reset()
            with self._status_lock:
                self._status.reset_readings()

            self._state = SessionState.DISCONNECTED
            self._status_text = STATUS_DISCONNECTED
            self._status_color = COLOR_DISCONNECTED
            logger.info("Disconnected")

    def reconnect(self) -> str:
        """Reconnect using last known port/baud.

        Raises:
            SerialIOError: If no previous connection exists
            PortOpenError: If the port cannot be reopened
        """
        if self._last_port is None:
            raise SerialIOError("Cannot reconnect: no previous connection")

        logger.info(f"Reconnecting to {self._last_port} at {self._last_baud} baud...")
        auto_refresh = self._poller.is_running()
        self.disconnect()
        return self.connect(port=self._last_port, baud=self._last_baud, auto_refresh=auto_refresh)

    # ========================================================================
    # Commands
    # ========================================================================

    def execute_command(self, command: str) -> Optional[str]:
        """Send any command; returns the reply for queries.

        A call while disconnected does nothing and returns None.
        """
        driver = self._active_driver()
        if driver is None:
            logger.debug(f"Ignoring {command!r} while disconnected")
            return None
        return driver.execute(command)

    def set_voltage(self, volts: Setpoint) -> None:
        """Send VOLT with a setpoint (text is parsed with a 0.0 fallback)."""
        value = self._to_float(volts)
        sent = self._send_if_connected(protocol.make_set_voltage_cmd(value))
        if sent:
            with self._status_lock:
                self._status.voltage_setpoint = value

    def set_current(self, amps: Setpoint) -> None:
        """Send CURR with a current limit."""
        value = self._to_float(amps)
        sent = self._send_if_connected(protocol.make_set_current_cmd(value))
        if sent:
            with self._status_lock:
                self._status.current_limit = value

    def output_on(self) -> None:
        if self._send_if_connected(protocol.CMD_OUTPUT_ON):
            with self._status_lock:
                self._status.output_enabled = True

    def output_off(self) -> None:
        if self._send_if_connected(protocol.CMD_OUTPUT_OFF):
            with self._status_lock:
                self._status.output_enabled = False

    def set_output(self, enabled: bool) -> None:
        if enabled:
            self.output_on()
        else:
            self.output_off()

    def reset(self) -> None:
        """Send *RST."""
        self._send_if_connected(protocol.CMD_RESET)

    def beep_off(self) -> None:
        """Silence the front-panel beeper."""
        self._send_if_connected(protocol.CMD_BEEP_OFF)

    def read_voltage(self) -> Optional[float]:
        """Query MEAS:VOLT? and update the displayed voltage."""
        value = self._query_float(protocol.CMD_READ_VOLTAGE)
        if value is not None:
            with self._status_lock:
                self._status.voltage = value
        return value

    def read_current(self) -> Optional[float]:
        """Query MEAS:CURR? and update the displayed current."""
        value = self._query_float(protocol.CMD_READ_CURRENT)
        if value is not None:
            with self._status_lock:
                self._status.current = value
        return value

    def read_output_state(self) -> Optional[bool]:
        reply = self.execute_command(protocol.CMD_READ_OUTPUT)
        if reply is None:
            return None
        try:
            enabled = parse_output_state(reply, self._sanitizer)
        except InvalidResponse as e:
            logger.warning(str(e))
            return None
        with self._status_lock:
            self._status.output_enabled = enabled
        return enabled

    def get_set_voltage(self) -> Optional[float]:
        """Query the programmed voltage setpoint."""
        value = self._query_float(protocol.CMD_GET_SET_VOLTAGE)
        if value is not None:
            with self._status_lock:
                self._status.voltage_setpoint = value
        return value

    def get_set_current(self) -> Optional[float]:
        """Query the programmed current limit."""
        value = self._query_float(protocol.CMD_GET_SET_CURRENT)
        if value is not None:
            with self._status_lock:
                self._status.current_limit = value
        return value

    # ========================================================================
    # Polling & Waveform Loop
    # ========================================================================

    def start_polling(self, interval_s: float = protocol.DEFAULT_POLL_INTERVAL_S) -> float:
        """Start the poller. Returns the cadence used (floored at 0.2 s).

        Raises:
            SerialIOError: If not connected
        """
        with self._state_lock:
            self._ensure_connected()
            return self._poller.start(interval_s)

    def stop_polling(self) -> None:
        self._poller.stop()

    def set_auto_refresh(
        self, enabled: bool, interval_s: float = protocol.DEFAULT_POLL_INTERVAL_S
    ) -> None:
        """Follow the auto-refresh toggle; ignored while disconnected."""
        with self._state_lock:
            if self._state != SessionState.CONNECTED:
                return
            if enabled:
                self._poller.start(interval_s)
            else:
                self._poller.stop()

    def poll_once(self) -> Optional[PollUpdate]:
        """Run a single poll cycle on the calling thread."""
        return self._poller.tick()

    def start_loop(self, volt_a: Setpoint, volt_b: Setpoint, interval_s: float) -> float:
        """Start alternating the voltage between two setpoints.

        Raises:
            SerialIOError: If not connected
        """
        with self._state_lock:
            self._ensure_connected()
            return self._waveform.start(volt_a, volt_b, interval_s)

    def stop_loop(self) -> None:
        self._waveform.stop()

    def toggle_loop(self, volt_a: Setpoint, volt_b: Setpoint, interval_s: float) -> bool:
        """Start the loop if stopped, otherwise stop it.

        Returns:
            True if the loop is running afterwards

        Raises:
            SerialIOError: If starting while not connected
        """
        if self._waveform.is_running():
            self._waveform.stop()
            return False
        self.start_loop(volt_a, volt_b, interval_s)
        return True

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    def is_connected(self) -> bool:
        return (
            self._state == SessionState.CONNECTED
            and self._transport is not None
            and self._transport.is_open
        )

    @property
    def identity(self) -> str:
        return self._status.identity

    @property
    def port_name(self) -> Optional[str]:
        return self._transport.port_name if self._transport else None

    @property
    def status(self) -> DeviceStatus:
        """Copy of the device read-back state."""
        with self._status_lock:
            return copy.copy(self._status)

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def status_color(self) -> Tuple[int, int, int]:
        return self._status_color

    @property
    def history(self) -> ChannelHistory:
        return self._history

    @property
    def is_polling(self) -> bool:
        return self._poller.is_running()

    @property
    def is_looping(self) -> bool:
        return self._waveform.is_running()

    def chart(self) -> Tuple[list[PathVertex], list[PathVertex]]:
        """Chart paths for the (voltage, current) history."""
        return self._poller.chart()

    def snapshot(self) -> Dict[str, object]:
        """Everything a front end needs to render the session."""
        return {
            "state": self._state.value,
            "status_text": self._status_text,
            "status_color": list(self._status_color),
            "port": self.port_name,
            "polling": self.is_polling,
            "looping": self.is_looping,
            "device": self.status.to_dict(),
        }

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _active_driver(self) -> Optional[CommandDriver]:
        if self._state != SessionState.CONNECTED:
            return None
        return self._driver

    def _ensure_connected(self) -> None:
        if self._state != SessionState.CONNECTED:
            raise SerialIOError(f"Operation requires a connection, current: {self._state.value}")

    def _send_if_connected(self, command: str) -> bool:
        driver = self._active_driver()
        if driver is None:
            logger.debug(f"Ignoring {command!r} while disconnected")
            return False
        try:
            driver.exchange(command)
        except SerialIOError as e:
            logger.error(f"Write error for {command!r}: {e}")
            return False
        return True

    def _query_float(self, command: str) -> Optional[float]:
        reply = self.execute_command(command)
        if reply is None:
            return None
        try:
            return parse_float_reply(reply, self._sanitizer)
        except InvalidResponse as e:
            logger.warning(str(e))
            return None

    def _resync(self) -> None:
        """Read back output state and setpoints. Each step is best-effort."""
        assert self._driver is not None

        steps = (
            (protocol.CMD_READ_OUTPUT, "output_enabled", parse_output_state),
            (protocol.CMD_GET_SET_VOLTAGE, "voltage_setpoint", parse_float_reply),
            (protocol.CMD_GET_SET_CURRENT, "current_limit", parse_float_reply),
        )
        for command, field_name, parser in steps:
            reply = self._driver.execute(command)
            if reply is None:
                logger.warning(f"Resync: no reply to {command}")
                continue
            try:
                value = parser(reply, self._sanitizer)
            except InvalidResponse as e:
                logger.warning(f"Resync: {e}")
                continue
            with self._status_lock:
                setattr(self._status, field_name, value)
            logger.debug(f"Resync: {field_name} = {value}")

    @staticmethod
    def _to_float(value: Setpoint) -> float:
        if isinstance(value, str):
            return parse_number(value)
        return float(value)
