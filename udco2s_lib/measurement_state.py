"""Thread-safe holder for the sensor's latest measurement record."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from udco2s_lib import parsing, protocol
from udco2s_lib.errors import MalformedLine
from udco2s_lib.models import Measurement

logger = logging.getLogger(__name__)

_FIELDS = {
    protocol.KEY_CO2: "_co2",
    protocol.KEY_HUMIDITY: "_humidity",
    protocol.KEY_TEMPERATURE: "_temperature",
    protocol.KEY_ID: "_device_id",
    protocol.KEY_VERSION: "_firmware_version",
    protocol.KEY_FRC: "_frc_value",
}


class MeasurementState:
    """Latest device identity and measurement values behind a single lock.

    One writer (the streaming reader thread) and any number of pollers share
    this object. Every read and write holds the same lock, so a snapshot
    never mixes values from two different lines.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._device_id = ""
        self._firmware_version = ""
        self._frc_value = 0
        self._timestamp: Optional[datetime] = None
        self._co2 = 0
        self._humidity = 0.0
        self._temperature = 0.0

    def apply_line(self, line: str) -> bool:
        """Parse one protocol line and update the record (thread-safe).

        Tokens are applied in order. A malformed numeric token stops the line;
        tokens applied before it are kept.

        Args:
            line: Line with CRLF and any "OK " echo removed

        Returns:
            True if the whole line was applied, False if it was cut short
        """
        with self._lock:
            logger.debug(f"Parsing line: {line!r}")
            try:
                for key, value in parsing.parse_line(line):
                    setattr(self, _FIELDS[key], value)
                    if key in protocol.MEASUREMENT_KEYS:
                        self._timestamp = datetime.now(timezone.utc)
            except MalformedLine as e:
                logger.warning(f"Skipping rest of line: {e}")
                return False

            logger.debug(
                f"Measurement: co2={self._co2} humidity={self._humidity} "
                f"temperature={self._temperature}"
            )
            return True

    def snapshot(self) -> Measurement:
        """Get a consistent copy of every field (thread-safe)."""
        with self._lock:
            return Measurement(
                device_id=self._device_id,
                firmware_version=self._firmware_version,
                frc_value=self._frc_value,
                timestamp=self._timestamp,
                co2=self._co2,
                humidity=self._humidity,
                temperature=self._temperature,
            )

    @property
    def device_id(self) -> str:
        with self._lock:
            return self._device_id

    @property
    def firmware_version(self) -> str:
        with self._lock:
            return self._firmware_version

    @property
    def frc_value(self) -> int:
        with self._lock:
            return self._frc_value

    @property
    def timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._timestamp

    @property
    def co2(self) -> int:
        with self._lock:
            return self._co2

    @property
    def humidity(self) -> float:
        with self._lock:
            return self._humidity

    @property
    def temperature(self) -> float:
        with self._lock:
            return self._temperature
