"""Prometheus exporter for the UD-CO2S sensor.

Startup sequence (any failure exits with status 1):
1. Read LISTEN_ADDR and TTY from the environment
2. Open the serial port, query ID and firmware version
3. Start measurement streaming
4. Copy the latest measurement into gauges every POLL_INTERVAL_S
5. Serve /metrics, /status and /health until SIGINT/SIGTERM or a serial fault

Error mapping:
- Streaming fault → /health 503, process shuts down
- Any other exception → 500
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from exporter.metrics import MetricsCollector, SensorMetrics
from exporter.settings import ConfigError, Settings, load_settings
from udco2s_lib import UDCO2SController, UDCO2SError
from udco2s_lib.errors import CommandFailure, TransportReadError
from udco2s_lib.models import SessionState

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


# =============================================================================
# Response Models
# =============================================================================

class StatusResponse(BaseModel):
    """Response for GET /status."""
    state: str
    device_id: str
    firmware_version: str
    frc_value: int
    timestamp: Optional[datetime]
    co2: int
    humidity: float
    temperature: float
    fault: Optional[str]


class HealthResponse(BaseModel):
    """Response for GET /health."""
    status: str


# =============================================================================
# FastAPI App
# =============================================================================

def create_app(controller: UDCO2SController, metrics: SensorMetrics) -> FastAPI:
    """Build the HTTP app around one controller and its gauges."""
    app = FastAPI(
        title="UD-CO2S Exporter",
        description="Prometheus metrics for the UD-CO2S CO2/humidity/temperature sensor",
        version="0.1.0",
    )
    app.state.controller = controller
    app.state.metrics = metrics

    @app.get("/metrics")
    def get_metrics() -> Response:
        """Prometheus text exposition of the sensor gauges."""
        return Response(generate_latest(metrics.registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/status", response_model=StatusResponse)
    def get_status():
        """Latest measurement and session state (one consistent snapshot)."""
        snapshot = controller.snapshot()
        fault = controller.fault
        return StatusResponse(
            state=controller.state.value,
            device_id=snapshot.device_id,
            firmware_version=snapshot.firmware_version,
            frc_value=snapshot.frc_value,
            timestamp=snapshot.timestamp,
            co2=snapshot.co2,
            humidity=snapshot.humidity,
            temperature=snapshot.temperature,
            fault=str(fault) if fault is not None else None,
        )

    @app.get("/health", response_model=HealthResponse)
    def get_health():
        """200 while the measurement stream is alive, 503 otherwise."""
        if controller.state != SessionState.STREAMING:
            detail = str(controller.fault) if controller.fault else f"state {controller.state.value}"
            raise HTTPException(status_code=503, detail=detail)
        return HealthResponse(status="ok")

    return app


# =============================================================================
# Process Lifecycle
# =============================================================================

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def setup_sensor(controller: UDCO2SController, settings: Settings) -> None:
    """Connect, identify the device and start streaming.

    Raises:
        UDCO2SError: On any failure; the process has no useful degraded mode
    """
    logger.info(f"Opening sensor on {settings.tty} at {settings.serial_baud} baud...")
    controller.connect(port=settings.tty, baud=settings.serial_baud)

    device_id = controller.query_device_id()
    version = controller.query_firmware_version()
    logger.info(f"Sensor ID: {device_id}, firmware: {version}")

    if not controller.start_measurement():
        raise CommandFailure("Device did not acknowledge STA")


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging("INFO")
        logger.critical(str(e))
        return 1

    configure_logging(settings.log_level)

    def on_fault(error: TransportReadError) -> None:
        # Reader thread; uvicorn polls should_exit, even before serving starts
        logger.critical(f"Serial link lost, shutting down: {error}")
        server.should_exit = True

    controller = UDCO2SController(on_fault=on_fault)
    metrics = SensorMetrics()
    collector = MetricsCollector(controller, metrics, settings.poll_interval_s)
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(controller, metrics),
            host=settings.listen_host,
            port=settings.listen_port,
            log_level=settings.log_level.lower(),
        )
    )

    try:
        setup_sensor(controller, settings)
    except UDCO2SError as e:
        logger.critical(f"Sensor setup failed: {e}")
        controller.disconnect()
        return 1

    collector.start()
    try:
        if controller.fault is None:
            logger.info(f"udco2s-exporter is running on {settings.listen_host}:{settings.listen_port}")
            server.run()
    finally:
        logger.info("Shutting down UD-CO2S exporter...")
        collector.stop()
        if controller.state == SessionState.STREAMING:
            try:
                controller.stop_measurement()
            except UDCO2SError as e:
                logger.error(f"Error during shutdown: {e}")
        controller.disconnect()
        logger.info("Shutdown complete")

    return 1 if controller.fault is not None else 0


if __name__ == "__main__":
    sys.exit(main())
