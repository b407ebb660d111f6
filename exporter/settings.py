"""Environment configuration for the UD-CO2S Prometheus exporter."""

import os
from dataclasses import dataclass
from typing import Tuple

from udco2s_lib import protocol

_LISTEN_ADDR_ENV = "LISTEN_ADDR"
_TTY_ENV = "TTY"
_SERIAL_BAUD_ENV = "SERIAL_BAUD"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_S"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_VALID_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


class ConfigError(Exception):
    """Raised when a required environment variable is missing or invalid."""

    pass


@dataclass(frozen=True)
class Settings:
    """Exporter settings.

    Attributes:
        listen_host: Interface the metrics server binds to.
        listen_port: TCP port of the metrics server.
        tty: Serial device path of the sensor.
        serial_baud: Serial baud rate.
        poll_interval_s: Seconds between copies of the measurement into gauges.
        log_level: Root logging level name.
    """

    listen_host: str
    listen_port: int
    tty: str
    serial_baud: int = protocol.DEFAULT_BAUD
    poll_interval_s: float = 1.0
    log_level: str = "INFO"


def _read_required_env(name: str) -> str:
    value = os.getenv(name)
    candidate = value.strip() if value is not None else ""
    if not candidate:
        raise ConfigError(f"please specify {name} environment variable")
    return candidate


def _read_positive_env(name: str, default, cast):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = cast(value.strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return parsed


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None or not value.strip():
        return default
    candidate = value.strip().upper()
    if candidate not in _VALID_LOG_LEVELS:
        raise ConfigError(f"{_LOG_LEVEL_ENV} must be one of {sorted(_VALID_LOG_LEVELS)}, got {value!r}")
    return candidate


def parse_listen_addr(addr: str) -> Tuple[str, int]:
    """Split "host:port" (or ":port") into its parts.

    An empty host binds all interfaces. IPv6 hosts use brackets: "[::1]:9233".

    Raises:
        ConfigError: If the port is missing or not in 1-65535
    """
    host, sep, port_str = addr.rpartition(":")
    if not sep:
        raise ConfigError(f"{_LISTEN_ADDR_ENV} must be host:port, got {addr!r}")

    try:
        port = int(port_str)
    except ValueError as e:
        raise ConfigError(f"{_LISTEN_ADDR_ENV} has invalid port in {addr!r}") from e
    if not (1 <= port <= 65535):
        raise ConfigError(f"{_LISTEN_ADDR_ENV} port must be 1-65535, got {port}")

    host = host.strip("[]") or "0.0.0.0"
    return host, port


def load_settings() -> Settings:
    """Read settings from the environment.

    Raises:
        ConfigError: If LISTEN_ADDR or TTY is missing, or any value is invalid
    """
    host, port = parse_listen_addr(_read_required_env(_LISTEN_ADDR_ENV))
    return Settings(
        listen_host=host,
        listen_port=port,
        tty=_read_required_env(_TTY_ENV),
        serial_baud=_read_positive_env(_SERIAL_BAUD_ENV, protocol.DEFAULT_BAUD, int),
        poll_interval_s=_read_positive_env(_POLL_INTERVAL_ENV, 1.0, float),
        log_level=_read_log_level("INFO"),
    )
