"""Prometheus gauges fed from the sensor's measurement snapshot."""

import logging
import threading
from typing import Optional

from prometheus_client import CollectorRegistry, Gauge, Info

from udco2s_lib import UDCO2SController
from udco2s_lib.models import Measurement

logger = logging.getLogger(__name__)


class SensorMetrics:
    """Gauges for one sensor, registered on their own registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self.co2 = Gauge(
            "udco2s_co2_concentration", "CO2 concentration", registry=self.registry
        )
        self.humidity = Gauge("udco2s_humidity", "Humidity", registry=self.registry)
        self.temperature = Gauge("udco2s_temperature", "Temperature", registry=self.registry)
        self.last_update = Gauge(
            "udco2s_last_measurement_timestamp_seconds",
            "Unix time of the last CO2/humidity/temperature update",
            registry=self.registry,
        )
        self.device = Info("udco2s_device", "Sensor identity", registry=self.registry)

    def update(self, measurement: Measurement) -> None:
        """Copy one snapshot into the gauges."""
        self.co2.set(measurement.co2)
        self.humidity.set(measurement.humidity)
        self.temperature.set(measurement.temperature)
        if measurement.timestamp is not None:
            self.last_update.set(measurement.timestamp.timestamp())
        self.device.info(
            {
                "device_id": measurement.device_id,
                "firmware_version": measurement.firmware_version,
            }
        )


class MetricsCollector:
    """Background poller that copies controller snapshots into SensorMetrics.

    Runs a thread that every poll_interval_s seconds takes one consistent
    snapshot from the controller and sets the gauges from it.
    """

    def __init__(
        self,
        controller: UDCO2SController,
        metrics: SensorMetrics,
        poll_interval_s: float = 1.0,
    ) -> None:
        """Initialize collector (does not start automatically).

        Args:
            controller: Connected controller to read from
            metrics: Gauges to update
            poll_interval_s: Seconds between updates
        """
        self._controller = controller
        self._metrics = metrics
        self._poll_interval = poll_interval_s
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Start background polling thread.

        Raises:
            RuntimeError: If collector is already running
        """
        if self._thread and self._thread.is_alive():
            raise RuntimeError("Collector already running")

        logger.info(f"Starting MetricsCollector (poll interval: {self._poll_interval}s)...")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._collector_loop,
            name="MetricsCollector",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop polling thread."""
        if not self._thread or not self._thread.is_alive():
            return

        logger.info("Stopping MetricsCollector...")
        self._stop_event.set()
        self._thread.join(timeout=5.0)

        if self._thread.is_alive():
            logger.warning("MetricsCollector thread did not stop cleanly")

        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def collect_once(self) -> Measurement:
        """Take one snapshot and publish it."""
        measurement = self._controller.snapshot()
        self._metrics.update(measurement)
        return measurement

    def _collector_loop(self) -> None:
        """Background loop; first update happens immediately."""
        logger.debug(f"Collector loop started (thread {threading.get_ident()})")

        while True:
            measurement = self.collect_once()
            logger.debug(
                f"Published co2={measurement.co2} humidity={measurement.humidity} "
                f"temperature={measurement.temperature}"
            )
            if self._stop_event.wait(timeout=self._poll_interval):
                break

        logger.debug("Collector loop stopped")
