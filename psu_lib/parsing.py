"""Pure functions for sanitizing and parsing instrument replies."""

import logging
from typing import Callable, Iterable, Optional

from psu_lib import protocol
from psu_lib.errors import InvalidResponse
from psu_lib.models import Measurement

logger = logging.getLogger(__name__)

Sanitizer = Callable[[str], str]


def strip_glyphs(text: str, glyphs: Iterable[str] = protocol.STRAY_GLYPHS) -> str:
    """Remove stray framing characters and surrounding whitespace.

    Args:
        text: Raw reply text
        glyphs: Characters or substrings to delete

    Returns:
        Cleaned text
    """
    for glyph in glyphs:
        text = text.replace(glyph, "")
    return text.strip()


def make_sanitizer(glyphs: Iterable[str] = protocol.STRAY_GLYPHS) -> Sanitizer:
    """Build a sanitizer that strips the given glyphs."""
    glyphs = tuple(glyphs)

    def sanitize(text: str) -> str:
        return strip_glyphs(text, glyphs)

    return sanitize


default_sanitizer: Sanitizer = make_sanitizer()


def parse_measurement(line: str, sanitizer: Optional[Sanitizer] = None) -> Measurement:
    """Parse a composite MEAS:ALL? reply.

    Expected format: <volts>,<amps>[,<more>...]
    Example: "5.0000,0.2500"

    Args:
        line: Reply line (LF already stripped)
        sanitizer: Cleanup applied before splitting. Defaults to stripping
                   the known stray glyphs.

    Returns:
        Measurement with voltage, current and any extra fields

    Raises:
        InvalidResponse: If fewer than two numeric fields are present
    """
    clean = (sanitizer or default_sanitizer)(line)
    if not clean:
        raise InvalidResponse("Empty measurement reply")

    parts = [part.strip() for part in clean.split(",")]
    if len(parts) < 2:
        raise InvalidResponse(f"Expected at least 2 fields, got {len(parts)}: {line!r}")

    try:
        values = [float(part) for part in parts]
    except ValueError as e:
        raise InvalidResponse(f"Non-numeric field in measurement: {line!r}") from e

    return Measurement(voltage=values[0], current=values[1], extra=tuple(values[2:]))


def parse_float_reply(line: str, sanitizer: Optional[Sanitizer] = None) -> float:
    """Parse a single-value query reply such as MEAS:VOLT?.

    Raises:
        InvalidResponse: If the reply is not a number
    """
    clean = (sanitizer or default_sanitizer)(line)
    try:
        return float(clean)
    except ValueError as e:
        raise InvalidResponse(f"Expected a number, got {line!r}") from e


def parse_output_state(line: str, sanitizer: Optional[Sanitizer] = None) -> bool:
    """Parse an OUTPut? reply.

    Accepts "1"/"0" and "ON"/"OFF" in any case.

    Raises:
        InvalidResponse: If the reply is not a recognised state
    """
    clean = (sanitizer or default_sanitizer)(line).upper()
    if clean in ("1", "ON"):
        return True
    if clean in ("0", "OFF"):
        return False
    raise InvalidResponse(f"Unknown output state: {line!r}")


def parse_number(text: str, default: float = 0.0) -> float:
    """Parse user-entered numeric text, falling back to default."""
    try:
        return float(str(text).strip())
    except ValueError:
        logger.debug(f"Unparseable number {text!r}, using {default}")
        return default


def adjust_setpoint(text: str, step: float, decimals: int) -> str:
    """Nudge a setpoint by step, clamped at zero.

    Args:
        text: Current setpoint text (malformed text counts as 0.0)
        step: Signed increment
        decimals: Digits after the decimal point in the result

    Returns:
        New setpoint, formatted
    """
    value = max(parse_number(text) + step, 0.0)
    return f"{value:.{decimals}f}"
