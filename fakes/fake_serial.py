"""Fake serial port that simulates an SCPI programmable power supply.

This simulator speaks the same dialect as the real instrument: CRLF
terminated commands in, LF terminated replies out, one reply per query.
It models a resistive load so measured current and regulation mode follow
the programmed setpoints.
"""

import logging
import threading
import time
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class FakePowerSupply:
    """Deterministic simulator of an SCPI bench supply behind a serial port.

    Implements:
    - Identity, reset and front-panel unlock
    - Voltage/current setpoints and their read-back queries
    - MEAS:VOLT?, MEAS:CURR? and composite MEAS:ALL?
    - Output enable/disable and OUTPut? query
    - Fault injection: write failures, read failures, silence, scripted replies
    """

    def __init__(
        self,
        identity: str = "FAKE,PSU-3005,SN0001,1.00",
        load_ohms: float = 10.0,
        stray_glyph: str = "",
        timeout: float = 0.05,
    ) -> None:
        """Initialize fake supply.

        Args:
            identity: *IDN? reply
            load_ohms: Resistive load on the output terminals
            stray_glyph: Text prepended to every MEAS:ALL? reply (device noise)
            timeout: Per-call read timeout in seconds, like serial.Serial
        """
        self.identity = identity
        self.load_ohms = load_ohms
        self.stray_glyph = stray_glyph

        # Programmed state
        self.voltage_setpoint = 0.0
        self.current_limit = 1.0
        self.output_enabled = False
        self.locked = False
        self.beep_enabled = True

        # Fault injection
        self.silent = False
        self.fail_writes = False
        self.fail_reads = False
        self.replies: Dict[str, str] = {}

        # Every command received, in order, without terminator
        self.commands: List[str] = []

        # Bytes waiting for the host to read
        self._output = bytearray()
        self._input_buffer = bytearray()
        self._cond = threading.Condition()

        # Port state
        self.is_open = True
        self.timeout = timeout

    def close(self) -> None:
        """Close the fake serial port."""
        self.is_open = False
        logger.debug("FakePowerSupply closed")

    def write(self, data: bytes) -> int:
        """Receive bytes from the host; complete commands are processed.

        Args:
            data: Bytes to write

        Returns:
            Number of bytes written
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")
        if self.fail_writes:
            raise OSError("Simulated write failure")

        self._input_buffer.extend(data)
        logger.debug(f"FakePowerSupply received: {data!r}")
        self._process_input()
        return len(data)

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes, waiting at most self.timeout.

        Returns:
            Bytes read, or b"" on timeout
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")
        if self.fail_reads:
            raise OSError("Simulated read failure")

        deadline = time.monotonic() + self.timeout
        with self._cond:
            while not self._output:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return b""
                self._cond.wait(timeout=remaining)

            chunk = bytes(self._output[:size])
            del self._output[:size]
            return chunk

    def flush(self) -> None:
        """Flush output buffer (no-op, writes are immediate)."""
        pass

    def reset_input_buffer(self) -> None:
        """Discard replies the host has not read yet."""
        with self._cond:
            self._output.clear()
        logger.debug("FakePowerSupply input buffer flushed")

    def queue_raw(self, data: bytes) -> None:
        """Make raw bytes available to the host, bypassing the command parser."""
        with self._cond:
            self._output.extend(data)
            self._cond.notify_all()

    # ========================================================================
    # Simulated Measurements
    # ========================================================================

    @property
    def measured_current(self) -> float:
        if not self.output_enabled or self.load_ohms <= 0:
            return 0.0
        return min(self.voltage_setpoint / self.load_ohms, self.current_limit)

    @property
    def measured_voltage(self) -> float:
        if not self.output_enabled:
            return 0.0
        return min(self.voltage_setpoint, self.measured_current * self.load_ohms)

    # ========================================================================
    # Internal: Input Processing
    # ========================================================================

    def _process_input(self) -> None:
        """Handle every CRLF-terminated command in the input buffer."""
        while b"\r\n" in self._input_buffer:
            idx = self._input_buffer.index(b"\r\n")
            cmd_bytes = bytes(self._input_buffer[:idx])
            self._input_buffer = self._input_buffer[idx + 2 :]

            cmd = cmd_bytes.decode("ascii", errors="ignore").strip()
            self.commands.append(cmd)
            self._handle_command(cmd)

    def _handle_command(self, cmd: str) -> None:
        upper = cmd.upper()

        if "?" in upper:
            if self.silent:
                return
            reply = self.replies.get(cmd)
            if reply is None:
                reply = self._answer_query(upper)
            if reply is not None:
                self._send_line(reply)
            return

        if upper == "*RST":
            self.voltage_setpoint = 0.0
            self.current_limit = 1.0
            self.output_enabled = False
        elif upper == "SYST:COMM:RLST LOC":
            self.locked = False
        elif upper == "SYST:CONF:BEEP OFF":
            self.beep_enabled = False
        elif upper == "OUTP ON":
            self.output_enabled = True
        elif upper == "OUTP OFF":
            self.output_enabled = False
        elif upper.startswith("VOLT "):
            self.voltage_setpoint = self._parse_value(cmd, self.voltage_setpoint)
        elif upper.startswith("CURR "):
            self.current_limit = self._parse_value(cmd, self.current_limit)
        else:
            logger.debug(f"FakePowerSupply ignoring unknown command {cmd!r}")

    def _answer_query(self, upper: str) -> Optional[str]:
        # Any query puts the instrument in remote mode
        self.locked = True

        if upper == "*IDN?":
            return self.identity
        if upper == "MEAS:ALL?":
            return f"{self.stray_glyph}{self.measured_voltage:.4f},{self.measured_current:.4f}"
        if upper == "MEAS:VOLT?":
            return f"{self.measured_voltage:.4f}"
        if upper == "MEAS:CURR?":
            return f"{self.measured_current:.4f}"
        if upper == "OUTPUT?":
            return "1" if self.output_enabled else "0"
        if upper == "SOUR:VOLT:LEV:IMM:AMPL?":
            return f"{self.voltage_setpoint:.3f}"
        if upper == "SOUR:CURR:LEV:IMM:AMPL?":
            return f"{self.current_limit:.3f}"

        logger.debug(f"FakePowerSupply has no answer for {upper!r}")
        return None

    def _send_line(self, text: str) -> None:
        self.queue_raw(text.encode("utf-8") + b"\n")

    @staticmethod
    def _parse_value(cmd: str, current: float) -> float:
        try:
            return float(cmd.split(None, 1)[1])
        except (IndexError, ValueError):
            return current
