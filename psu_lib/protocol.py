"""Wire protocol constants for SCPI-style programmable power supplies.

Commands are ASCII text terminated with CRLF. Any command containing a
question mark is a query and is answered with exactly one LF-terminated line.
"""

from typing import Final

# ============================================================================
# Line Termination
# ============================================================================

# Host appends CRLF to every command
COMMAND_TERMINATOR: Final[bytes] = b"\r\n"

# Device ends each reply with LF; CR is not a terminator
LINE_END: Final[bytes] = b"\n"

QUERY_MARKER: Final[str] = "?"

# ============================================================================
# Command Set
# ============================================================================

CMD_IDENTITY: Final[str] = "*IDN?"
CMD_RESET: Final[str] = "*RST"
CMD_UNLOCK: Final[str] = "SYST:COMM:RLST LOC"  # Return front panel to local control
CMD_BEEP_OFF: Final[str] = "SYST:CONF:BEEP OFF"

CMD_SET_VOLTAGE: Final[str] = "VOLT"
CMD_SET_CURRENT: Final[str] = "CURR"

CMD_READ_VOLTAGE: Final[str] = "MEAS:VOLT?"
CMD_READ_CURRENT: Final[str] = "MEAS:CURR?"
CMD_READ_ALL: Final[str] = "MEAS:ALL?"  # Composite: "<volts>,<amps>[,...]"
CMD_READ_OUTPUT: Final[str] = "OUTPut?"

CMD_GET_SET_VOLTAGE: Final[str] = "SOUR:VOLT:LEV:IMM:AMPL?"
CMD_GET_SET_CURRENT: Final[str] = "SOUR:CURR:LEV:IMM:AMPL?"

CMD_OUTPUT_ON: Final[str] = "OUTP ON"
CMD_OUTPUT_OFF: Final[str] = "OUTP OFF"

VOLTAGE_DECIMALS: Final[int] = 2
CURRENT_DECIMALS: Final[int] = 3


def is_query(command: str) -> bool:
    """Return True if the command expects a reply line."""
    return QUERY_MARKER in command


def make_set_voltage_cmd(volts: float) -> str:
    """Build set-voltage command: VOLT <value>

    Args:
        volts: Target output voltage

    Returns:
        Command string (no CRLF appended - framing handles it)
    """
    return f"{CMD_SET_VOLTAGE} {volts:.{VOLTAGE_DECIMALS}f}"


def make_set_current_cmd(amps: float) -> str:
    """Build set-current-limit command: CURR <value>

    Args:
        amps: Target current limit

    Returns:
        Command string (no CRLF appended)
    """
    return f"{CMD_SET_CURRENT} {amps:.{CURRENT_DECIMALS}f}"


# ============================================================================
# Serial Settings & Timing (seconds)
# ============================================================================

DEFAULT_BAUD: Final[int] = 9600

# Whole-line response window, measured from the first read attempt
RESPONSE_TIMEOUT_S: Final[float] = 0.5

# A full request/response round trip at 9600 baud cannot complete faster
MIN_POLL_INTERVAL_S: Final[float] = 0.2
DEFAULT_POLL_INTERVAL_S: Final[float] = 1.0

MIN_WAVEFORM_INTERVAL_S: Final[float] = 0.05

# Let the unlock command drain before the port is released
UNLOCK_SETTLE_S: Final[float] = 0.05

# ============================================================================
# Display / Buffer Defaults
# ============================================================================

HISTORY_CAPACITY: Final[int] = 100

CC_BAND: Final[float] = 0.05
CC_NOISE_FLOOR_A: Final[float] = 0.010

# Device-specific framing noise seen in replies. U+FFFD is what a lone
# Latin-1 guillemet byte becomes after lossy UTF-8 decoding.
STRAY_GLYPHS: Final[tuple[str, ...]] = ("\u00ab", "\ufffd")

UNKNOWN_DISPLAY: Final[str] = "---"
NO_PORTS_FOUND: Final[str] = "No Ports Found"
