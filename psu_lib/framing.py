"""CRLF command framing and LF-terminated reply accumulation."""

import logging
import time
from typing import Optional

from psu_lib import protocol
from psu_lib.errors import SerialIOError
from psu_lib.transport import Transport

logger = logging.getLogger(__name__)


def encode_frame(command: str) -> bytes:
    """Turn a command string into an outbound frame.

    Args:
        command: Command text, e.g. "MEAS:ALL?"

    Returns:
        Encoded command followed by CRLF
    """
    return command.encode("utf-8") + protocol.COMMAND_TERMINATOR


def decode_line(
    transport: Transport, timeout_s: float = protocol.RESPONSE_TIMEOUT_S
) -> Optional[str]:
    """Read one reply line, a byte at a time.

    Accumulates until a LF byte arrives or until more than timeout_s has
    elapsed since the first read attempt. Bytes are decoded permissively
    (invalid sequences replaced) and trimmed of surrounding whitespace.

    A timeout with some bytes but no terminator returns the partial text as
    a best-effort reply. A read failure ends accumulation the same way.

    Args:
        transport: Open transport to read from
        timeout_s: Whole-line response window in seconds

    Returns:
        Trimmed reply text, or None if nothing arrived
    """
    received = bytearray()
    start = time.monotonic()
    terminated = False

    while time.monotonic() - start <= timeout_s:
        try:
            byte = transport.read_byte()
        except SerialIOError as e:
            logger.warning(f"Read error after {len(received)} bytes: {e}")
            break

        if byte is None:
            continue

        received += byte
        if byte == protocol.LINE_END:
            terminated = True
            break

    if not received:
        return None

    line = received.decode("utf-8", errors="replace").strip()
    if not terminated:
        logger.warning(f"Reply not terminated within {timeout_s}s, using partial: {line!r}")
    return line
