"""Serial transport layer for SCPI power-supply communication."""

import logging
from typing import List, Optional, Protocol

from psu_lib import protocol
from psu_lib.errors import PortOpenError, SerialIOError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes, returning b"" when the read timeout elapses."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def reset_input_buffer(self) -> None:
        """Discard unread input."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Exclusively-owned wrapper around one open serial connection.

    Failures are raised to the caller; nothing is retried here.
    """

    def __init__(self, serial_port: SerialLike, port_name: str = "") -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakePowerSupply for testing)
            port_name: Endpoint name, for logging and status display
        """
        self._port = serial_port
        self._port_name = port_name

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        timeout_s: float = protocol.RESPONSE_TIMEOUT_S,
    ) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial endpoint name (e.g., "/dev/ttyUSB0" or "COM3")
            baud: Baud rate. Default 9600.
            timeout_s: Per-call read timeout in seconds.

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            PortOpenError: If port cannot be opened. The message is the
                           underlying error text, unmodified.
        """
        import serial

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                write_timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
        except Exception as e:
            raise PortOpenError(str(e)) from e

        logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
        return cls(ser, port_name=port)

    @property
    def port_name(self) -> str:
        """Endpoint name this transport was opened on."""
        return self._port_name

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def close(self) -> None:
        """Close the serial port."""
        if self._port.is_open:
            self._port.close()
            logger.info(f"Closed serial port {self._port_name}")

    def read_byte(self) -> Optional[bytes]:
        """Read a single byte.

        Returns:
            One byte, or None if the read timeout elapsed with no data

        Raises:
            SerialIOError: If port is closed or read fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            data = self._port.read(1)
        except Exception as e:
            raise SerialIOError(f"Failed to read from port: {e}") from e

        return data if data else None

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes to port.

        Raises:
            SerialIOError: If write fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            sent = self._port.write(data)
            self._port.flush()
            logger.debug(f"Sent {sent} bytes: {data!r}")
        except Exception as e:
            raise SerialIOError(f"Failed to write to port: {e}") from e

    def flush_input(self) -> None:
        """Discard all pending input from device.

        Raises:
            SerialIOError: If port is closed or flush fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise SerialIOError(f"Failed to flush input: {e}") from e


def available_ports() -> List[str]:
    """List serial endpoint names for display.

    Returns:
        Port names in scan order, or a single "No Ports Found" entry
    """
    from serial.tools import list_ports

    names = [info.device for info in list_ports.comports()]
    if not names:
        return [protocol.NO_PORTS_FOUND]
    return names
