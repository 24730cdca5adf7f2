"""
psu_lib - Serial SCPI driver for programmable bench power supplies.

Covers command framing, reply accumulation, composite measurement polling
with chart history, and a two-setpoint voltage waveform loop.
"""

from psu_lib.driver import CommandDriver
from psu_lib.errors import (
    InvalidResponse,
    PortOpenError,
    PsuError,
    ResponseTimeout,
    SerialIOError,
)
from psu_lib.models import (
    DeviceStatus,
    Measurement,
    ModeThresholds,
    OperatingMode,
    PollUpdate,
    SessionState,
)
from psu_lib.session import PowerSupplySession

__version__ = "0.1.0"

__all__ = [
    "PowerSupplySession",
    "CommandDriver",
    "DeviceStatus",
    "Measurement",
    "ModeThresholds",
    "OperatingMode",
    "PollUpdate",
    "SessionState",
    "PsuError",
    "PortOpenError",
    "SerialIOError",
    "ResponseTimeout",
    "InvalidResponse",
]
