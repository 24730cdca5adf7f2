"""Tests for FastAPI REST and WebSocket endpoints using FakePowerSupply (no hardware).

Tests verify:
- Connection lifecycle (connect, disconnect, double connect)
- Setpoints, output, raw commands and one-shot reads
- Poller and waveform loop control, including interval floors
- Error mapping (PortOpenError→503, not connected→503)
- Chart, stats and CSV export
- WebSocket /stream snapshots
"""

import time

import pytest
from fastapi.testclient import TestClient

from api import main as api_module
from fakes.fake_serial import FakePowerSupply
from psu_lib.errors import PortOpenError
from psu_lib.transport import Transport


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singletons before and after each test."""
    api_module._session = None
    api_module._store = None
    yield
    if api_module._session is not None:
        api_module._session.disconnect()
    api_module._session = None
    api_module._store = None


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(api_module.app)


@pytest.fixture
def fake_serial():
    fake = FakePowerSupply(load_ohms=10.0, timeout=0.01)
    fake.voltage_setpoint = 5.0
    fake.current_limit = 1.0
    fake.output_enabled = True
    return fake


@pytest.fixture
def monkeypatch_transport(monkeypatch, fake_serial):
    """Monkeypatch Transport.open to use FakePowerSupply."""

    def mock_open(port: str, baud: int, timeout_s: float = 0.5):
        return Transport(fake_serial, port_name=port)

    monkeypatch.setattr(Transport, "open", staticmethod(mock_open))


@pytest.fixture
def connected(client, monkeypatch_transport):
    response = client.post("/connect", params={"port": "/dev/ttyFAKE"})
    assert response.status_code == 200
    return client


# =============================================================================
# Connection Lifecycle
# =============================================================================


def test_root_and_health(client) -> None:
    for path in ("/", "/health"):
        data = client.get(path).json()
        assert data["service"] == "PSU SCPI API"
        assert data["status"] == "online"
    assert client.get("/version").json() == {"version": api_module.API_VERSION}


def test_connect(client, monkeypatch_transport, fake_serial) -> None:
    response = client.post("/connect", params={"port": "/dev/ttyFAKE", "baud": 9600})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "connected"
    assert data["identity"] == "FAKE,PSU-3005,SN0001,1.00"
    assert data["port"] == "/dev/ttyFAKE"
    assert data["polling"] is False
    assert fake_serial.commands[0] == "*IDN?"


def test_connect_with_auto_refresh(client, monkeypatch_transport, fake_serial) -> None:
    response = client.post(
        "/connect",
        params={"port": "/dev/ttyFAKE", "auto_refresh": True, "poll_interval_ms": 200},
    )
    assert response.json()["polling"] is True

    time.sleep(0.5)
    assert client.get("/status").json()["rows"] >= 1


def test_double_connect_rejected(connected) -> None:
    response = connected.post("/connect", params={"port": "/dev/ttyFAKE"})
    assert response.status_code == 400
    assert "Already connected" in response.json()["detail"]


def test_connect_port_open_error(client, monkeypatch) -> None:
    def failing_open(port: str, baud: int, timeout_s: float = 0.5):
        raise PortOpenError(f"could not open port {port}")

    monkeypatch.setattr(Transport, "open", staticmethod(failing_open))

    response = client.post("/connect", params={"port": "/dev/ttyNOPE"})

    assert response.status_code == 503
    assert response.json()["detail"] == "could not open port /dev/ttyNOPE"
    assert api_module._session is None


def test_disconnect(connected, fake_serial) -> None:
    response = connected.post("/disconnect")

    assert response.json() == {"status": "disconnected"}
    assert fake_serial.commands[-1] == "SYST:COMM:RLST LOC"
    assert not fake_serial.is_open
    assert api_module._session is None


def test_disconnect_when_not_connected(client) -> None:
    assert client.post("/disconnect").json() == {"status": "disconnected"}


def test_status_disconnected(client) -> None:
    data = client.get("/status").json()
    assert data["connected"] is False
    assert data["status_text"] == "Disconnected"
    assert data["voltage"] == "---"
    assert data["mode"] == "---"


def test_status_connected(connected) -> None:
    data = connected.get("/status").json()
    assert data["connected"] is True
    assert data["status_text"] == "Connected"
    assert data["status_color"] == [0, 128, 0]
    assert data["voltage_setpoint"] == 5.0
    assert data["current_limit"] == 1.0
    assert data["output_enabled"] is True


def test_ports(client, monkeypatch) -> None:
    import serial.tools.list_ports

    class Info:
        def __init__(self, device: str) -> None:
            self.device = device

    monkeypatch.setattr(
        serial.tools.list_ports, "comports", lambda: [Info("/dev/ttyUSB0"), Info("/dev/ttyUSB1")]
    )
    assert client.get("/ports").json() == {"ports": ["/dev/ttyUSB0", "/dev/ttyUSB1"]}

    monkeypatch.setattr(serial.tools.list_ports, "comports", lambda: [])
    assert client.get("/ports").json() == {"ports": ["No Ports Found"]}


# =============================================================================
# Commands
# =============================================================================


def test_commands_require_connection(client) -> None:
    assert client.post("/command", json={"command": "*IDN?"}).status_code == 503
    assert client.post("/voltage", json={"value": "5"}).status_code == 503
    assert client.post("/poll/start", json={"interval_ms": 500}).status_code == 503
    assert client.get("/chart").status_code == 503


def test_raw_command(connected) -> None:
    data = connected.post("/command", json={"command": "*IDN?"}).json()
    assert data == {"command": "*IDN?", "response": "FAKE,PSU-3005,SN0001,1.00"}

    data = connected.post("/command", json={"command": "OUTP OFF"}).json()
    assert data["response"] is None


def test_set_voltage_and_current(connected, fake_serial) -> None:
    assert connected.post("/voltage", json={"value": "12.5"}).json() == {"voltage_setpoint": 12.5}
    assert connected.post("/current", json={"value": "0.2"}).json() == {"current_limit": 0.2}
    assert fake_serial.commands[-2:] == ["VOLT 12.50", "CURR 0.200"]


def test_adjust_setpoints(client) -> None:
    """Adjusting only edits the text; no connection needed."""
    assert client.post("/voltage/adjust", json={"value": "5.00", "step": 0.1}).json() == {
        "value": "5.10"
    }
    assert client.post("/current/adjust", json={"value": "0.005", "step": -0.01}).json() == {
        "value": "0.000"
    }


def test_output(connected, fake_serial) -> None:
    assert connected.post("/output", json={"enabled": False}).json() == {"output_enabled": False}
    assert not fake_serial.output_enabled


def test_reset(connected, fake_serial) -> None:
    assert connected.post("/reset").json() == {"status": "reset"}
    assert fake_serial.commands[-1] == "*RST"


def test_beep_off(connected, fake_serial) -> None:
    assert connected.post("/beep/off").json() == {"status": "beep off"}
    assert fake_serial.commands[-1] == "SYST:CONF:BEEP OFF"
    assert not fake_serial.beep_enabled


def test_one_shot_reads(connected) -> None:
    # 5 V into 10 ohms: 0.5 A, below the 1 A limit
    assert connected.post("/read/voltage").json() == {"voltage": 5.0}
    assert connected.post("/read/current").json() == {"current": 0.5}


# =============================================================================
# Poller & Loop
# =============================================================================


def test_poll_start_floors_interval(connected) -> None:
    data = connected.post("/poll/start", json={"interval_ms": 50}).json()
    assert data == {"status": "polling", "interval_ms": 200.0}
    assert connected.get("/status").json()["polling"] is True

    assert connected.post("/poll/stop").json() == {"status": "stopped"}
    assert connected.get("/status").json()["polling"] is False


def test_polling_feeds_chart_and_stats(connected) -> None:
    connected.post("/poll/start", json={"interval_ms": 200})
    time.sleep(0.7)
    connected.post("/poll/stop")

    chart = connected.get("/chart").json()
    assert chart["voltage"]["path"].startswith("M 0 ")
    assert len(chart["voltage"]["points"]) == 100
    assert chart["voltage"]["points"][-1] == [100.0, 0.0]

    stats = connected.get("/stats").json()
    assert stats["row_count"] >= 2
    assert stats["mean_voltage"] == pytest.approx(5.0)

    status = connected.get("/status").json()
    assert status["mode"] == "CV"
    assert status["voltage"] == "5.000"


def test_loop_start_and_stop(connected, fake_serial) -> None:
    data = connected.post(
        "/loop/start", json={"volt_a": "3", "volt_b": "6", "interval_ms": 100}
    ).json()
    assert data == {"status": "looping", "interval_ms": 100.0}

    time.sleep(0.35)
    assert connected.post("/loop/stop").json() == {"status": "stopped"}

    volts = [c for c in fake_serial.commands if c.startswith("VOLT")]
    assert volts[:2] == ["VOLT 3.00", "VOLT 6.00"]


def test_export_csv(connected, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(api_module, "EXPORT_PATH", str(tmp_path))

    response = connected.get("/export/csv")
    assert response.status_code == 400
    assert response.json()["detail"] == "No data to export"

    api_module._session.poll_once()
    response = connected.get("/export/csv")

    assert response.status_code == 200
    assert response.text.splitlines()[0] == "timestamp,identity,voltage,current,power,mode"
    assert list(tmp_path.glob("psu_data_*.csv"))


def test_stats_without_store(client) -> None:
    assert client.get("/stats").status_code == 400


def test_stats_before_first_sample(connected) -> None:
    """A connected session with an empty log reports zero rows."""
    response = connected.get("/stats")

    assert response.status_code == 200
    assert response.json()["row_count"] == 0
    assert response.json()["mean_voltage"] is None


# =============================================================================
# WebSocket
# =============================================================================


def test_websocket_not_connected(client) -> None:
    with client.websocket_connect("/stream") as websocket:
        assert websocket.receive_json() == {"error": "Not connected"}


def test_websocket_streams_snapshot(connected) -> None:
    with connected.websocket_connect("/stream") as websocket:
        data = websocket.receive_json()
        assert data["state"] == "connected"
        assert data["device"]["identity"] == "FAKE,PSU-3005,SN0001,1.00"

        api_module._session.poll_once()
        data = websocket.receive_json()
        assert data["device"]["voltage"] == 5.0
