"""Data models for the UD-CO2S sensor library."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SessionState(Enum):
    """Streaming session states."""

    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Measurement:
    """Consistent copy of the sensor's latest state.

    Attributes:
        device_id: Device identifier reported by ID?.
        firmware_version: Firmware version reported by VER?.
        frc_value: Forced recalibration reference in ppm (0 until reported).
        timestamp: UTC time of the last CO2/HUM/TMP update, None before the first.
        co2: CO2 concentration in ppm.
        humidity: Relative humidity in percent.
        temperature: Temperature in Celsius.
    """

    device_id: str = ""
    firmware_version: str = ""
    frc_value: int = 0
    timestamp: Optional[datetime] = None
    co2: int = 0
    humidity: float = 0.0
    temperature: float = 0.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single command/response exchange.

    Attributes:
        response: Payload with "OK " stripped on success, the last other line
                  on failure, or None if no line arrived.
        ok: True if an OK line was received.
        remainder: Received text not consumed by the exchange. Always
                   ends mid-line or empty unless complete lines followed
                   the OK line, in which case they are kept CRLF-joined.
    """

    response: Optional[str]
    ok: bool
    remainder: str = ""
