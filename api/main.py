"""FastAPI REST and WebSocket interface for an SCPI bench power supply.

Single-process, single-instrument lifecycle with thread-safe access to:
- PowerSupplySession (serial link, commands, poller, waveform loop)
- DataStore (pandas DataFrame of polled measurements)

Error mapping:
- PortOpenError → 503
- SerialIOError → 503
- ResponseTimeout → 504
- InvalidResponse → 502
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from data_store import DataStore
from psu_lib import PowerSupplySession, __version__
from psu_lib import protocol
from psu_lib.chart import path_to_svg
from psu_lib.errors import InvalidResponse, PortOpenError, ResponseTimeout, SerialIOError
from psu_lib.models import ModeThresholds
from psu_lib.parsing import adjust_setpoint
from psu_lib.transport import available_ports

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "9160"))
DEFAULT_SERIAL_PORT = os.getenv("SERIAL_PORT", "/dev/ttyUSB0")
DEFAULT_SERIAL_BAUD = int(os.getenv("SERIAL_BAUD", str(protocol.DEFAULT_BAUD)))
DEFAULT_POLL_INTERVAL_MS = float(os.getenv("POLL_INTERVAL_MS", "1000"))
HISTORY_CAPACITY = int(os.getenv("HISTORY_CAPACITY", str(protocol.HISTORY_CAPACITY)))
CC_BAND = float(os.getenv("CC_BAND", str(protocol.CC_BAND)))
CC_NOISE_FLOOR_A = float(os.getenv("CC_NOISE_FLOOR_A", str(protocol.CC_NOISE_FLOOR_A)))
EXPORT_PATH = os.getenv("EXPORT_PATH", tempfile.gettempdir())
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

API_VERSION = __version__

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_session: Optional[PowerSupplySession] = None
_store: Optional[DataStore] = None
_lock = RLock()  # Protects state-changing operations

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="PSU SCPI API",
    description="REST and WebSocket interface for SCPI programmable power supplies",
    version=API_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Request/Response Models
# =============================================================================

class CommandRequest(BaseModel):
    """Request body for POST /command."""
    command: str


class SetpointRequest(BaseModel):
    """Request body for POST /voltage and /current (text, parsed permissively)."""
    value: str


class AdjustRequest(BaseModel):
    """Request body for POST /voltage/adjust and /current/adjust."""
    value: str
    step: float


class OutputRequest(BaseModel):
    """Request body for POST /output."""
    enabled: bool


class PollStartRequest(BaseModel):
    """Request body for POST /poll/start."""
    interval_ms: float = DEFAULT_POLL_INTERVAL_MS


class LoopStartRequest(BaseModel):
    """Request body for POST /loop/start."""
    volt_a: str
    volt_b: str
    interval_ms: float


class ConnectResponse(BaseModel):
    """Response for POST /connect."""
    status: str
    identity: str
    port: str
    polling: bool


class StatusResponse(BaseModel):
    """Response for GET /status."""
    connected: bool
    state: str
    status_text: str
    status_color: List[int]
    port: Optional[str]
    identity: str
    polling: bool
    looping: bool
    voltage: str
    current: str
    power: str
    mode: str
    output_enabled: Optional[bool]
    voltage_setpoint: Optional[float]
    current_limit: Optional[float]
    rows: int


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(PortOpenError)
async def port_open_error_handler(request, exc: PortOpenError):
    """Map PortOpenError to 503 Service Unavailable."""
    logger.error(f"PortOpenError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(SerialIOError)
async def serial_io_error_handler(request, exc: SerialIOError):
    """Map SerialIOError to 503 Service Unavailable."""
    logger.error(f"SerialIOError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ResponseTimeout)
async def response_timeout_handler(request, exc: ResponseTimeout):
    """Map ResponseTimeout to 504 Gateway Timeout."""
    logger.error(f"ResponseTimeout: {exc}")
    return JSONResponse(status_code=504, content={"detail": str(exc)})


@app.exception_handler(InvalidResponse)
async def invalid_response_handler(request, exc: InvalidResponse):
    """Map InvalidResponse to 502 Bad Gateway."""
    logger.error(f"InvalidResponse: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _require_session() -> PowerSupplySession:
    if _session is None or not _session.is_connected():
        raise HTTPException(status_code=503, detail="Not connected")
    return _session


# =============================================================================
# Read-Only Endpoints
# =============================================================================

@app.get("/ports")
async def get_ports():
    """List serial endpoints ("No Ports Found" when none)."""
    return {"ports": available_ports()}


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get connection state, live readings and task flags."""
    session = _session
    connected = session is not None and session.is_connected()

    if session is None:
        display = {key: protocol.UNKNOWN_DISPLAY for key in ("voltage", "current", "power", "mode")}
        return StatusResponse(
            connected=False,
            state="disconnected",
            status_text="Disconnected",
            status_color=[255, 0, 0],
            port=None,
            identity="",
            polling=False,
            looping=False,
            output_enabled=None,
            voltage_setpoint=None,
            current_limit=None,
            rows=0,
            **display,
        )

    status = session.status
    return StatusResponse(
        connected=connected,
        state=session.state.value,
        status_text=session.status_text,
        status_color=list(session.status_color),
        port=session.port_name,
        identity=status.identity,
        polling=session.is_polling,
        looping=session.is_looping,
        output_enabled=status.output_enabled,
        voltage_setpoint=status.voltage_setpoint,
        current_limit=status.current_limit,
        rows=len(_store) if _store is not None else 0,
        **status.display(),
    )


@app.get("/chart")
async def get_chart():
    """Voltage and current history as SVG path commands plus raw vertices."""
    session = _require_session()
    voltage_path, current_path = session.chart()
    return {
        "voltage": {
            "path": path_to_svg(voltage_path),
            "points": [[v.x, v.y] for v in voltage_path],
        },
        "current": {
            "path": path_to_svg(current_path),
            "points": [[v.x, v.y] for v in current_path],
        },
    }


@app.get("/stats")
async def get_stats():
    """Summary of the recorded measurement log."""
    if _store is None:
        raise HTTPException(status_code=400, detail="No data store available")
    return _store.get_stats()


@app.get("/export/csv")
async def export_csv():
    """Export the measurement log to CSV and return it as a download.

    Raises:
        400: If no data available
    """
    if _store is None:
        raise HTTPException(status_code=400, detail="No data store available")

    if len(_store) == 0:
        raise HTTPException(status_code=400, detail="No data to export")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    csv_path = _store.export_csv(str(Path(EXPORT_PATH) / f"psu_data_{timestamp}.csv"))

    return FileResponse(
        path=csv_path,
        media_type="text/csv",
        filename=Path(csv_path).name
    )


# =============================================================================
# Lifecycle Endpoints
# =============================================================================

@app.post("/connect", response_model=ConnectResponse)
async def connect(
    port: str = Query(DEFAULT_SERIAL_PORT, description="Serial port (e.g., /dev/ttyUSB0)"),
    baud: int = Query(DEFAULT_SERIAL_BAUD, description="Baud rate"),
    auto_refresh: bool = Query(False, description="Start polling once connected"),
    poll_interval_ms: float = Query(DEFAULT_POLL_INTERVAL_MS, description="Poll cadence (ms)"),
):
    """Open the port, identify the instrument and read back its setpoints.

    Raises:
        400: If already connected
        503: If the port cannot be opened (PortOpenError)
    """
    global _session, _store

    with _lock:
        if _session is not None and _session.is_connected():
            raise HTTPException(
                status_code=400,
                detail="Already connected. Disconnect first."
            )

        logger.info(f"Connecting to {port} at {baud} baud...")
        store = DataStore(max_rows=100000)
        session = PowerSupplySession(
            thresholds=ModeThresholds(band=CC_BAND, noise_floor_a=CC_NOISE_FLOOR_A),
            history_capacity=HISTORY_CAPACITY,
            on_update=store.record,
        )

        identity = session.connect(
            port=port,
            baud=baud,
            auto_refresh=auto_refresh,
            poll_interval_s=poll_interval_ms / 1000.0,
        )

        _session = session
        _store = store

        logger.info(f"Connected to power supply: {identity or 'unknown'}")
        return ConnectResponse(
            status="connected",
            identity=identity,
            port=port,
            polling=session.is_polling,
        )


@app.post("/disconnect")
async def disconnect():
    """Stop polling and the loop, unlock the front panel and close the port.

    Returns:
        {"status": "disconnected"}
    """
    global _session

    with _lock:
        if _session is not None:
            logger.info("Disconnecting from power supply...")
            _session.disconnect()
            _session = None

        return {"status": "disconnected"}


# =============================================================================
# Command Endpoints
# =============================================================================

@app.post("/command")
async def send_command(req: CommandRequest):
    """Send a raw command; queries return their reply line."""
    session = _require_session()
    response = session.execute_command(req.command)
    return {"command": req.command, "response": response}


@app.post("/voltage")
async def set_voltage(req: SetpointRequest):
    """Program the output voltage."""
    session = _require_session()
    session.set_voltage(req.value)
    return {"voltage_setpoint": session.status.voltage_setpoint}


@app.post("/current")
async def set_current(req: SetpointRequest):
    """Program the current limit."""
    session = _require_session()
    session.set_current(req.value)
    return {"current_limit": session.status.current_limit}


@app.post("/voltage/adjust")
async def adjust_voltage(req: AdjustRequest):
    """Step a voltage setpoint text (clamped at 0, 2 decimals). Sends nothing."""
    return {"value": adjust_setpoint(req.value, req.step, protocol.VOLTAGE_DECIMALS)}


@app.post("/current/adjust")
async def adjust_current(req: AdjustRequest):
    """Step a current setpoint text (clamped at 0, 3 decimals). Sends nothing."""
    return {"value": adjust_setpoint(req.value, req.step, protocol.CURRENT_DECIMALS)}


@app.post("/output")
async def set_output(req: OutputRequest):
    """Enable or disable the output."""
    session = _require_session()
    session.set_output(req.enabled)
    return {"output_enabled": session.status.output_enabled}


@app.post("/reset")
async def reset_device():
    """Send *RST."""
    session = _require_session()
    session.reset()
    return {"status": "reset"}


@app.post("/beep/off")
async def beep_off():
    """Silence the front-panel beeper."""
    session = _require_session()
    session.beep_off()
    return {"status": "beep off"}


@app.post("/read/voltage")
async def read_voltage():
    """One-shot MEAS:VOLT? outside the poll cadence."""
    session = _require_session()
    value = session.read_voltage()
    return {"voltage": value}


@app.post("/read/current")
async def read_current():
    """One-shot MEAS:CURR? outside the poll cadence."""
    session = _require_session()
    value = session.read_current()
    return {"current": value}


# =============================================================================
# Poller & Waveform Loop
# =============================================================================

@app.post("/poll/start")
async def start_polling(req: Optional[PollStartRequest] = None):
    """Start auto-refresh. Intervals under 200 ms are raised to 200 ms."""
    session = _require_session()
    req = req or PollStartRequest()

    with _lock:
        interval_s = session.start_polling(req.interval_ms / 1000.0)

    return {"status": "polling", "interval_ms": interval_s * 1000.0}


@app.post("/poll/stop")
async def stop_polling():
    """Stop auto-refresh."""
    session = _require_session()
    with _lock:
        session.stop_polling()
    return {"status": "stopped"}


@app.post("/loop/start")
async def start_loop(req: LoopStartRequest):
    """Alternate the output voltage between volt_a and volt_b."""
    session = _require_session()

    with _lock:
        interval_s = session.start_loop(req.volt_a, req.volt_b, req.interval_ms / 1000.0)

    return {"status": "looping", "interval_ms": interval_s * 1000.0}


@app.post("/loop/stop")
async def stop_loop():
    """Stop the waveform loop."""
    session = _require_session()
    with _lock:
        session.stop_loop()
    return {"status": "stopped"}


# =============================================================================
# WebSocket Streaming
# =============================================================================

@app.websocket("/stream")
async def websocket_stream(websocket: WebSocket):
    """WebSocket endpoint pushing the session snapshot whenever it changes.

    Checks every 250 ms and sends only when readings or flags differ from
    the last message.
    """
    await websocket.accept()
    logger.info(f"WebSocket client connected: {websocket.client}")

    if _session is None:
        await websocket.send_json({"error": "Not connected"})
        await websocket.close()
        return

    try:
        last = None

        while True:
            session = _session
            if session is None:
                await websocket.send_json({"state": "disconnected"})
                await websocket.close()
                break

            snapshot = session.snapshot()
            if snapshot != last:
                await websocket.send_json(snapshot)
                last = snapshot

            # Client messages are ignored; receiving notices a disconnect
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=0.25)
            except asyncio.TimeoutError:
                pass

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {websocket.client}")


# =============================================================================
# Health Check
# =============================================================================

@app.get("/")
async def root():
    """Service info."""
    return {
        "service": "PSU SCPI API",
        "version": API_VERSION,
        "status": "online"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "service": "PSU SCPI API",
        "version": API_VERSION,
        "status": "online"
    }


@app.get("/version")
async def version():
    """API version."""
    return {"version": API_VERSION}


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup configuration."""
    logger.info("=" * 60)
    logger.info("PSU SCPI API started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Default Serial Port: {DEFAULT_SERIAL_PORT}")
    logger.info(f"Default Serial Baud: {DEFAULT_SERIAL_BAUD}")
    logger.info(f"Poll Interval: {DEFAULT_POLL_INTERVAL_MS} ms")
    logger.info(f"CC Detection: band={CC_BAND}, noise floor={CC_NOISE_FLOOR_A} A")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Release the instrument on shutdown."""
    global _session

    logger.info("Shutting down PSU SCPI API...")

    if _session is not None:
        logger.info("Disconnecting session...")
        _session.disconnect()
        _session = None

    logger.info("Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
