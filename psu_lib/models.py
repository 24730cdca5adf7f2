"""Data models for the SCPI power-supply library."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from psu_lib import protocol

# Tolerance for the inclusive constant-current band edges
_BAND_EPSILON = 1e-9


class SessionState(Enum):
    """Session connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class OperatingMode(Enum):
    """Regulation mode inferred from measured current vs. its limit."""

    NONE = "none"
    CONSTANT_VOLTAGE = "CV"
    CONSTANT_CURRENT = "CC"


@dataclass(frozen=True)
class Measurement:
    """One composite measurement reply.

    Attributes:
        voltage: Measured output voltage in volts.
        current: Measured output current in amps.
        extra: Any further numeric fields the instrument appended.
    """

    voltage: float
    current: float
    extra: Tuple[float, ...] = ()

    @property
    def power(self) -> float:
        """Output power in watts (voltage x current)."""
        return self.voltage * self.current


@dataclass
class ModeThresholds:
    """Constant-current detection heuristic.

    The present current counts as current-limited when it lies within
    band (fractional) of the active limit and above noise_floor_a. Both
    values are empirical, not taken from instrument documentation.

    Attributes:
        band: Fractional distance from the limit, inclusive. Default 0.05.
        noise_floor_a: Readings at or below this are never CC. Default 10 mA.
    """

    band: float = protocol.CC_BAND
    noise_floor_a: float = protocol.CC_NOISE_FLOOR_A

    def __post_init__(self) -> None:
        """Validate threshold values."""
        if not (0.0 <= self.band < 1.0):
            raise ValueError(f"band must be in [0, 1), got {self.band}")
        if self.noise_floor_a < 0.0:
            raise ValueError(f"noise_floor_a must be >= 0, got {self.noise_floor_a}")

    def classify(
        self,
        current: float,
        current_limit: Optional[float],
        output_enabled: Optional[bool],
    ) -> OperatingMode:
        """Infer the regulation mode.

        Args:
            current: Present current reading in amps
            current_limit: Active current limit, or None if never read back
            output_enabled: Output state; None (unknown) is treated as enabled

        Returns:
            NONE when output is off, CONSTANT_CURRENT inside the band,
            CONSTANT_VOLTAGE otherwise
        """
        if output_enabled is False:
            return OperatingMode.NONE

        if current_limit is None or current <= self.noise_floor_a:
            return OperatingMode.CONSTANT_VOLTAGE

        if abs(current - current_limit) <= self.band * current_limit + _BAND_EPSILON:
            return OperatingMode.CONSTANT_CURRENT

        return OperatingMode.CONSTANT_VOLTAGE


def _fmt(value: Optional[float], decimals: int = 3) -> str:
    if value is None:
        return protocol.UNKNOWN_DISPLAY
    return f"{value:.{decimals}f}"


@dataclass
class DeviceStatus:
    """Read-back state of the connected instrument.

    Setpoint fields are filled by the connect resync and by set commands.
    Reading fields are filled by the poller and manual reads, and go back
    to unknown (None) on disconnect.
    """

    identity: str = ""
    output_enabled: Optional[bool] = None
    voltage_setpoint: Optional[float] = None
    current_limit: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    power: Optional[float] = None
    mode: Optional[OperatingMode] = None

    def apply_measurement(self, measurement: Measurement, thresholds: ModeThresholds) -> None:
        """Update readings, power and mode from a composite measurement."""
        self.voltage = measurement.voltage
        self.current = measurement.current
        self.power = measurement.power
        self.mode = thresholds.classify(
            measurement.current, self.current_limit, self.output_enabled
        )

    def reset_readings(self) -> None:
        """Return all read-back fields to unknown."""
        self.identity = ""
        self.output_enabled = None
        self.voltage_setpoint = None
        self.current_limit = None
        self.voltage = None
        self.current = None
        self.power = None
        self.mode = None

    def display(self) -> Dict[str, str]:
        """Readings formatted for display, "---" where unknown."""
        return {
            "voltage": _fmt(self.voltage),
            "current": _fmt(self.current),
            "power": _fmt(self.power),
            "mode": self.mode.value if self.mode else protocol.UNKNOWN_DISPLAY,
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "identity": self.identity,
            "output_enabled": self.output_enabled,
            "voltage_setpoint": self.voltage_setpoint,
            "current_limit": self.current_limit,
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
            "mode": self.mode.value if self.mode else None,
            "display": self.display(),
        }


@dataclass
class PollUpdate:
    """What the poller publishes after each tick.

    Attributes:
        ok: True if the composite query was answered and parsed.
        status: Copy of the device status after the tick.
        voltage_path: Chart vertices for the voltage history.
        current_path: Chart vertices for the current history.
    """

    ok: bool
    status: DeviceStatus
    voltage_path: list = field(default_factory=list)
    current_path: list = field(default_factory=list)
