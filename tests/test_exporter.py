"""Tests for the Prometheus exporter: settings, gauges and HTTP endpoints.

Uses FakeUDCO2S (no hardware) and FastAPI's TestClient.
"""

import time

import pytest
import uvicorn
from fastapi.testclient import TestClient

from exporter import main as exporter_main
from exporter.metrics import MetricsCollector, SensorMetrics
from exporter.settings import ConfigError, load_settings, parse_listen_addr
from fakes.fake_serial import FakeUDCO2S
from udco2s_lib.controller import UDCO2SController
from udco2s_lib.models import Measurement
from udco2s_lib.transport import Transport


@pytest.fixture
def streaming_controller():
    """Controller connected to a fake sensor, identified and streaming."""
    fake_serial = FakeUDCO2S(device_id="UD-CO2S-42", firmware_version="1.0.5", period_s=0.02)
    controller = UDCO2SController()
    controller.connect(serial_port=fake_serial)
    controller.query_device_id()
    controller.query_firmware_version()
    assert controller.start_measurement()

    deadline = time.monotonic() + 2.0
    while controller.timestamp is None and time.monotonic() < deadline:
        time.sleep(0.01)

    yield controller
    controller.disconnect()


@pytest.fixture
def client(streaming_controller: UDCO2SController) -> TestClient:
    metrics = SensorMetrics()
    MetricsCollector(streaming_controller, metrics).collect_once()
    return TestClient(exporter_main.create_app(streaming_controller, metrics))


# =============================================================================
# Settings
# =============================================================================

def test_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("LISTEN_ADDR", "127.0.0.1:9233")
    monkeypatch.setenv("TTY", "/dev/ttyACM0")
    monkeypatch.setenv("POLL_INTERVAL_S", "2.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("SERIAL_BAUD", raising=False)

    settings = load_settings()

    assert settings.listen_host == "127.0.0.1"
    assert settings.listen_port == 9233
    assert settings.tty == "/dev/ttyACM0"
    assert settings.serial_baud == 115200
    assert settings.poll_interval_s == 2.5
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("missing", ["LISTEN_ADDR", "TTY"])
def test_settings_require_listen_addr_and_tty(monkeypatch, missing: str) -> None:
    """Both variables are mandatory; absence is a startup error."""
    monkeypatch.setenv("LISTEN_ADDR", ":9233")
    monkeypatch.setenv("TTY", "/dev/ttyACM0")
    monkeypatch.delenv(missing)

    with pytest.raises(ConfigError, match=missing):
        load_settings()


def test_settings_reject_bad_numbers(monkeypatch) -> None:
    monkeypatch.setenv("LISTEN_ADDR", ":9233")
    monkeypatch.setenv("TTY", "/dev/ttyACM0")
    monkeypatch.setenv("POLL_INTERVAL_S", "-1")

    with pytest.raises(ConfigError):
        load_settings()


def test_parse_listen_addr() -> None:
    assert parse_listen_addr(":9233") == ("0.0.0.0", 9233)
    assert parse_listen_addr("localhost:80") == ("localhost", 80)
    assert parse_listen_addr("[::1]:9233") == ("::1", 9233)

    for bad in ("9233", "host:", "host:0", "host:70000", "host:http"):
        with pytest.raises(ConfigError):
            parse_listen_addr(bad)


# =============================================================================
# Gauges
# =============================================================================

def test_sensor_metrics_update() -> None:
    metrics = SensorMetrics()
    metrics.update(
        Measurement(device_id="X1", firmware_version="2.0", co2=612, humidity=40.5, temperature=21.25)
    )

    registry = metrics.registry
    assert registry.get_sample_value("udco2s_co2_concentration") == 612
    assert registry.get_sample_value("udco2s_humidity") == 40.5
    assert registry.get_sample_value("udco2s_temperature") == 21.25
    assert registry.get_sample_value(
        "udco2s_device_info", {"device_id": "X1", "firmware_version": "2.0"}
    ) == 1.0


def test_collector_thread_publishes(streaming_controller: UDCO2SController) -> None:
    """The background collector copies snapshots into the gauges."""
    metrics = SensorMetrics()
    collector = MetricsCollector(streaming_controller, metrics, poll_interval_s=0.05)

    collector.start()
    assert collector.is_running()
    with pytest.raises(RuntimeError):
        collector.start()

    deadline = time.monotonic() + 2.0
    while (
        metrics.registry.get_sample_value("udco2s_co2_concentration") != 415
        and time.monotonic() < deadline
    ):
        time.sleep(0.01)
    collector.stop()

    assert not collector.is_running()
    assert metrics.registry.get_sample_value("udco2s_co2_concentration") == 415
    assert metrics.registry.get_sample_value("udco2s_last_measurement_timestamp_seconds") > 0


# =============================================================================
# HTTP Endpoints
# =============================================================================

def test_metrics_endpoint(client: TestClient) -> None:
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "udco2s_co2_concentration 415.0" in body
    assert "udco2s_humidity 45.2" in body
    assert "udco2s_temperature 23.1" in body
    assert 'device_id="UD-CO2S-42"' in body


def test_status_endpoint(client: TestClient) -> None:
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "streaming"
    assert data["device_id"] == "UD-CO2S-42"
    assert data["firmware_version"] == "1.0.5"
    assert data["co2"] == 415
    assert data["timestamp"] is not None
    assert data["fault"] is None


def test_health_endpoint(client: TestClient, streaming_controller: UDCO2SController) -> None:
    """Healthy while streaming, 503 once the stream has stopped."""
    assert client.get("/health").json() == {"status": "ok"}

    streaming_controller.stop_measurement()

    response = client.get("/health")
    assert response.status_code == 503


# =============================================================================
# Process Startup
# =============================================================================

def test_main_exits_without_config(monkeypatch) -> None:
    monkeypatch.delenv("LISTEN_ADDR", raising=False)
    monkeypatch.delenv("TTY", raising=False)

    assert exporter_main.main() == 1


def test_main_exits_when_port_cannot_open(monkeypatch, tmp_path) -> None:
    """A bad device path is fatal at startup."""
    monkeypatch.setenv("LISTEN_ADDR", "127.0.0.1:9233")
    monkeypatch.setenv("TTY", str(tmp_path / "no-such-tty"))

    assert exporter_main.main() == 1


@pytest.fixture
def fake_sensor(monkeypatch) -> FakeUDCO2S:
    """Environment for main() with the serial port and HTTP server replaced."""
    fake_serial = FakeUDCO2S(period_s=0.02)
    monkeypatch.setenv("LISTEN_ADDR", "127.0.0.1:9233")
    monkeypatch.setenv("TTY", "/dev/ttyFAKE0")
    monkeypatch.setattr(
        Transport, "open", staticmethod(lambda port, baud=115200: Transport(fake_serial))
    )
    return fake_serial


@pytest.fixture
def served(monkeypatch) -> list:
    """Records uvicorn.Server.run calls instead of binding a socket."""
    calls: list = []
    monkeypatch.setattr(uvicorn.Server, "run", lambda self, sockets=None: calls.append(self))
    return calls


def test_main_serves_then_stops_sensor(fake_sensor: FakeUDCO2S, served: list) -> None:
    """Normal run: identify, stream, serve, then STP and close on exit."""
    assert exporter_main.main() == 0

    assert len(served) == 1
    assert fake_sensor.commands[:3] == ["ID?", "VER?", "STA"]
    assert "STP" in fake_sensor.commands
    assert fake_sensor.is_open is False


def test_main_exits_when_start_rejected(fake_sensor: FakeUDCO2S, served: list) -> None:
    fake_sensor.replies["STA"] = b"NG\r\n"

    assert exporter_main.main() == 1
    assert served == []
    assert fake_sensor.is_open is False


def test_main_exits_when_identity_query_fails(fake_sensor: FakeUDCO2S, served: list) -> None:
    fake_sensor.replies["ID?"] = b"NG\r\n"

    assert exporter_main.main() == 1
    assert served == []
    assert "STA" not in fake_sensor.commands


def test_fault_before_serving_skips_server(
    monkeypatch, fake_sensor: FakeUDCO2S, served: list
) -> None:
    """A read fault right after STA still ends in an orderly exit."""
    setup_sensor = exporter_main.setup_sensor

    def setup_then_fail(controller: UDCO2SController, settings) -> None:
        setup_sensor(controller, settings)
        fake_sensor.fail_reads = True
        deadline = time.monotonic() + 2.0
        while controller.fault is None and time.monotonic() < deadline:
            time.sleep(0.01)

    monkeypatch.setattr(exporter_main, "setup_sensor", setup_then_fail)

    assert exporter_main.main() == 1
    assert served == []
    assert fake_sensor.is_open is False


def test_fault_while_serving_stops_server(monkeypatch, fake_sensor: FakeUDCO2S) -> None:
    """The fault callback asks the running server to exit."""
    exit_requested: list = []

    def run(self, sockets=None) -> None:
        fake_sensor.fail_reads = True
        deadline = time.monotonic() + 2.0
        while not self.should_exit and time.monotonic() < deadline:
            time.sleep(0.01)
        exit_requested.append(self.should_exit)

    monkeypatch.setattr(uvicorn.Server, "run", run)

    assert exporter_main.main() == 1
    assert exit_requested == [True]
