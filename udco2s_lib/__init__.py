"""
udco2s_lib - Python driver for the UD-CO2S CO2/humidity/temperature sensor.

Speaks the sensor's CRLF-terminated ASCII protocol over USB serial and keeps
the latest streamed measurement available to any number of pollers.
"""

from udco2s_lib.controller import UDCO2SController
from udco2s_lib.errors import (
    CommandFailure,
    CommandTimeout,
    MalformedLine,
    SessionStateError,
    TransportOpenError,
    TransportReadError,
    UDCO2SError,
    ValidationError,
)
from udco2s_lib.models import CommandResult, Measurement, SessionState

__version__ = "0.1.0"

__all__ = [
    "UDCO2SController",
    "CommandResult",
    "Measurement",
    "SessionState",
    "UDCO2SError",
    "TransportOpenError",
    "TransportReadError",
    "CommandFailure",
    "CommandTimeout",
    "MalformedLine",
    "ValidationError",
    "SessionStateError",
]
