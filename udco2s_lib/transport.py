"""Serial transport layer for UD-CO2S sensor communication."""

import logging
import threading
from typing import List, Optional, Protocol, Tuple

from udco2s_lib import parsing, protocol
from udco2s_lib.errors import TransportOpenError, TransportReadError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes from serial port (b"" on timeout)."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def reset_input_buffer(self) -> None:
        """Flush input buffer."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Wrapper around pyserial with protocol-specific helpers.

    Handles CRLF termination, NUL padding and reassembly of the byte stream
    into lines. Read timeouts are kept short so callers can check a
    cancellation event between reads.
    """

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeUDCO2S for testing)
        """
        self._port = serial_port
        self._close_lock = threading.Lock()

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        timeout_s: float = protocol.DEFAULT_READ_TIMEOUT_S,
    ) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial port device name (e.g., "/dev/ttyACM0")
            baud: Baud rate. Default 115200 matches the UD-CO2S.
            timeout_s: Read timeout in seconds. Bounds how long a read can
                       block before a cancellation check.

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            TransportOpenError: If port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise TransportOpenError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False
            )
            logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
            return cls(ser)
        except Exception as e:
            raise TransportOpenError(f"Failed to open {port} at {baud} baud: {e}") from e

    def close(self) -> None:
        """Close the serial port. Safe to call from several threads."""
        with self._close_lock:
            if self._port.is_open:
                self._port.close()
                logger.info("Closed serial port")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes to port (no automatic termination).

        Args:
            data: Raw bytes to send

        Raises:
            TransportReadError: If the port is closed or the write fails
        """
        if not self._port.is_open:
            raise TransportReadError("Serial port is not open")

        try:
            sent = self._port.write(data)
            self._port.flush()
            logger.debug(f"Sent {sent} bytes: {data!r}")
        except Exception as e:
            raise TransportReadError(f"Failed to write to port: {e}") from e

    def write_cmd(self, text: str) -> None:
        """Write a text command terminated with CRLF.

        Args:
            text: Command string (e.g., "ID?", "STA", "FRC=400")

        Raises:
            TransportReadError: If write fails
        """
        data = (text + protocol.LINE_TERMINATOR).encode("ascii")
        self.write_bytes(data)

    def read_chunk(self) -> str:
        """Read one fixed-size chunk and drop NUL padding.

        Returns:
            Decoded text, or "" if the read timed out with no data

        Raises:
            TransportReadError: If port is closed or read fails
        """
        if not self._port.is_open:
            raise TransportReadError("Serial port is not open")

        try:
            raw = self._port.read(protocol.READ_CHUNK_SIZE)
        except Exception as e:
            raise TransportReadError(f"Failed to read from port: {e}") from e

        fragment = raw.replace(protocol.PADDING_BYTE, b"")
        if not fragment:
            return ""

        text = fragment.decode("ascii", errors="replace")
        logger.debug(f"Received fragment: {text!r}")
        return text

    def read_lines(
        self,
        remainder: str = "",
        cancel: Optional[threading.Event] = None,
        max_reads: Optional[int] = None,
    ) -> Tuple[List[str], str]:
        """Read until at least one complete CRLF-terminated line is available.

        Empty reads are retried. Text already held in remainder is checked
        before reading, so complete lines handed over from an earlier exchange
        are returned without waiting for new bytes.

        Args:
            remainder: Partial text carried over from the previous call
            cancel: Checked before every read; when set, returns at once
            max_reads: Upper bound on chunk reads for this call (None = unbounded)

        Returns:
            Tuple of (complete lines, new remainder). The line list is empty
            when cancelled or when max_reads is exhausted; the remainder then
            holds everything accumulated so far.

        Raises:
            TransportReadError: If the port is closed or a read fails
        """
        buffer = remainder
        reads = 0
        while True:
            lines, rest = parsing.split_lines(buffer)
            if lines:
                return lines, rest

            if cancel is not None and cancel.is_set():
                return [], buffer
            if max_reads is not None and reads >= max_reads:
                return [], buffer

            reads += 1
            buffer += self.read_chunk()

    def flush_input(self) -> None:
        """Discard all pending input from device.

        Raises:
            TransportReadError: If port is closed or the flush fails
        """
        if not self._port.is_open:
            raise TransportReadError("Serial port is not open")

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise TransportReadError(f"Failed to flush input: {e}") from e
