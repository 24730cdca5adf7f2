"""Schema normalization for poll updates to DataFrame rows."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from psu_lib.models import PollUpdate

# DataFrame schema: column names and their dtypes
SCHEMA = {
    "timestamp": str,  # UTC ISO 8601 format
    "identity": str,  # *IDN? reply of the instrument
    "voltage": float,  # Measured volts
    "current": float,  # Measured amps
    "power": float,  # Watts, voltage x current
    "mode": str,  # "CV", "CC" or "none"
}


def update_to_row(update: PollUpdate, ts: Optional[datetime] = None) -> Dict[str, Any]:
    """Convert a successful PollUpdate to a DataFrame row dictionary.

    Args:
        update: Update published by the poller
        ts: Sample time; defaults to now (UTC)

    Returns:
        Dictionary with all SCHEMA keys

    Raises:
        ValueError: If the update carries no measurement
    """
    status = update.status
    if not update.ok or status.voltage is None or status.current is None:
        raise ValueError("Poll update has no measurement")

    ts = ts or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)

    return {
        "timestamp": ts.astimezone(timezone.utc).isoformat(),
        "identity": status.identity,
        "voltage": status.voltage,
        "current": status.current,
        "power": status.power,
        "mode": status.mode.value if status.mode else None,
    }
