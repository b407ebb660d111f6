"""Wire protocol constants for the UD-CO2S CO2/humidity/temperature sensor.

Commands and replies are ASCII lines terminated by CRLF. Command replies
start with "OK " on success; in streaming mode the device pushes lines like
"OK CO2=415,HUM=45.2,TMP=23.1" at a fixed cadence.
"""

from typing import Final

# ============================================================================
# Line Termination
# ============================================================================

LINE_TERMINATOR: Final[str] = "\r\n"

# Transport may hand back fixed-size buffers padded with NUL bytes
PADDING_BYTE: Final[bytes] = b"\x00"

# ============================================================================
# Serial Settings
# ============================================================================

DEFAULT_BAUD: Final[int] = 115200

# Read timeout doubles as the cancellation poll interval
DEFAULT_READ_TIMEOUT_S: Final[float] = 0.2

READ_CHUNK_SIZE: Final[int] = 128

# ============================================================================
# Commands
# ============================================================================

CMD_QUERY_ID: Final[str] = "ID?"
CMD_QUERY_VERSION: Final[str] = "VER?"
CMD_START: Final[str] = "STA"
CMD_STOP: Final[str] = "STP"
CMD_QUERY_FRC: Final[str] = "FRC?"
CMD_SET_FRC_PREFIX: Final[str] = "FRC="


def make_set_frc_cmd(value: int) -> str:
    """Build FRC set command: FRC=<n>

    Args:
        value: Forced recalibration reference in ppm (not range-checked here)

    Returns:
        Command string (no CRLF appended - transport layer handles)
    """
    return f"{CMD_SET_FRC_PREFIX}{value}"


# ============================================================================
# Replies
# ============================================================================

OK_WORD: Final[str] = "OK"
OK_PREFIX: Final[str] = "OK "

# Number of read cycles spent waiting for a command reply
MAX_RESULT_READS: Final[int] = 10

# ============================================================================
# Line Keys
# ============================================================================

KEY_CO2: Final[str] = "CO2"
KEY_HUMIDITY: Final[str] = "HUM"
KEY_TEMPERATURE: Final[str] = "TMP"
KEY_ID: Final[str] = "ID"
KEY_VERSION: Final[str] = "VER"
KEY_FRC: Final[str] = "FRC"

TOKEN_SEPARATOR: Final[str] = ","
KEY_VALUE_SEPARATOR: Final[str] = "="

# Keys whose update counts as a live measurement (stamps the timestamp)
MEASUREMENT_KEYS: Final[frozenset[str]] = frozenset({KEY_CO2, KEY_HUMIDITY, KEY_TEMPERATURE})

# ============================================================================
# Valid Configuration Values
# ============================================================================

FRC_MIN: Final[int] = 400
FRC_MAX: Final[int] = 2000
