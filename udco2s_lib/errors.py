"""Custom exceptions for the UD-CO2S sensor library."""


class UDCO2SError(Exception):
    """Base exception for all UD-CO2S library errors."""

    pass


class TransportOpenError(UDCO2SError):
    """Raised when the serial device cannot be opened (bad path, busy, etc)."""

    pass


class TransportReadError(UDCO2SError):
    """Raised when serial I/O fails mid-session. The link is not recovered.

    Covers failed writes and input flushes as well as reads.
    """

    pass


class CommandFailure(UDCO2SError):
    """Raised when the device answers a command with something other than OK."""

    pass


class CommandTimeout(CommandFailure):
    """Raised when no reply line arrives within the read budget."""

    pass


class MalformedLine(UDCO2SError):
    """Raised when a recognized KEY=VALUE token has an unparseable value."""

    pass


class ValidationError(UDCO2SError):
    """Raised when a command argument is out of range. No I/O is performed."""

    pass


class SessionStateError(UDCO2SError):
    """Raised when an operation is not valid in the current session state."""

    pass
