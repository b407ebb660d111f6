"""High-level controller for the UD-CO2S sensor with session state management."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from udco2s_lib import parsing, protocol
from udco2s_lib.errors import (
    CommandFailure,
    CommandTimeout,
    SessionStateError,
    TransportReadError,
    ValidationError,
)
from udco2s_lib.measurement_state import MeasurementState
from udco2s_lib.models import CommandResult, Measurement, SessionState
from udco2s_lib.transport import SerialLike, Transport

logger = logging.getLogger(__name__)

FaultCallback = Callable[[TransportReadError], None]


def _payload_matches(payload: str, expect_key: Optional[str]) -> bool:
    """True if an OK payload can be the reply to a query for expect_key."""
    if expect_key is None or protocol.KEY_VALUE_SEPARATOR not in payload:
        return True
    return payload.startswith(f"{expect_key}{protocol.KEY_VALUE_SEPARATOR}")


class UDCO2SController:
    """High-level controller orchestrating UD-CO2S sensor operations.

    Owns the serial transport and the latest measurement record. Setup
    commands run synchronously on the caller's thread; once measurement is
    started a background reader thread owns all reads and keeps the record
    current until it is cancelled or the link fails.

    Two locks are used: one serializes access to the transport (a command's
    write+read, or a write while streaming), the other lives inside
    MeasurementState and guards the record.
    """

    def __init__(
        self,
        on_fault: Optional[FaultCallback] = None,
    ) -> None:
        """Initialize controller. Call connect() before any command.

        Args:
            on_fault: Called from the reader thread with the TransportReadError
                      that ended the measurement stream.
        """
        self._transport: Optional[Transport] = None
        self._state = SessionState.IDLE
        self._measurement = MeasurementState()
        self._on_fault = on_fault
        self._fault: Optional[TransportReadError] = None

        # Serializes raw writes/reads on the transport
        self._io_lock = threading.Lock()

        # Lock for session state transitions
        self._state_lock = threading.Lock()

        self._reader_thread: Optional[threading.Thread] = None
        self._cancel: Optional[threading.Event] = None

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(
        self,
        port: Optional[str] = None,
        baud: int = protocol.DEFAULT_BAUD,
        serial_port: Optional[SerialLike] = None,
    ) -> None:
        """Open the serial link to the sensor.

        Args:
            port: Serial device path (e.g., "/dev/ttyACM0"). Required if serial_port not given.
            baud: Baud rate. Default 115200.
            serial_port: Pre-configured serial port object (for testing). If provided,
                        port and baud are ignored.

        Raises:
            TransportOpenError: If the port cannot be opened
            SessionStateError: If already connected
        """
        with self._state_lock:
            if self.is_connected():
                raise SessionStateError(f"Already connected (state: {self._state.value})")

            if serial_port is not None:
                self._transport = Transport(serial_port)
            elif port is not None:
                self._transport = Transport.open(port, baud)
            else:
                raise ValueError("Must provide either 'port' or 'serial_port'")

            self._fault = None
            self._state = SessionState.IDLE
            logger.info("Connected to sensor")

    def disconnect(self) -> None:
        """Stop the reader thread if running and close the serial port."""
        with self._state_lock:
            logger.info("Disconnecting from sensor...")
            self._stop_reader_thread()

            if self._transport:
                self._transport.close()
                self._transport = None

            self._state = SessionState.IDLE
            logger.info("Disconnected")

    def is_connected(self) -> bool:
        """Check if the transport is present and open."""
        return self._transport is not None and self._transport.is_open

    # ========================================================================
    # Command/Response
    # ========================================================================

    def send_command(self, cmd: str) -> CommandResult:
        """Send one command and wait for its OK reply.

        Reads at most protocol.MAX_RESULT_READS chunks. Lines that are not an
        OK reply are skipped.

        Args:
            cmd: Command without terminator (e.g., "VER?")

        Returns:
            CommandResult; ok is False if no OK line arrived within the budget

        Raises:
            SessionStateError: If not connected or measurement is streaming
            TransportReadError: If serial I/O fails (transport is closed first)
        """
        return self._exchange(cmd)

    def _exchange(
        self, cmd: str, expect_key: Optional[str] = None, flush: bool = False
    ) -> CommandResult:
        """Write cmd and read its reply under the transport lock.

        Args:
            cmd: Command without terminator
            expect_key: If set, OK lines whose payload carries a different
                        KEY= are skipped (e.g. streamed measurement lines)
            flush: Discard pending input before writing
        """
        self._ensure_not_streaming(cmd)
        transport = self._require_transport()

        with self._io_lock:
            try:
                if flush:
                    transport.flush_input()
                transport.write_cmd(cmd)
                result = self._read_result(transport, expect_key=expect_key)
            except TransportReadError:
                logger.error(f"Serial failure during {cmd!r}, closing port")
                transport.close()
                raise

        if result.ok:
            logger.debug(f"{cmd!r} -> {result.response!r}")
        else:
            logger.warning(f"{cmd!r} failed: {result.response!r}")
        return result

    def query_device_id(self) -> str:
        """Ask the device for its identifier and store it.

        Raises:
            CommandTimeout: If no reply arrives
            CommandFailure: If the reply is not OK
        """
        result = self._exchange(protocol.CMD_QUERY_ID, expect_key=protocol.KEY_ID, flush=True)
        self._apply_reply(protocol.KEY_ID, protocol.CMD_QUERY_ID, result)
        return self._measurement.device_id

    def query_firmware_version(self) -> str:
        """Ask the device for its firmware version and store it.

        Pending input is discarded first so a stale line is not taken as the reply.

        Raises:
            CommandTimeout: If no reply arrives
            CommandFailure: If the reply is not OK
        """
        result = self._exchange(
            protocol.CMD_QUERY_VERSION, expect_key=protocol.KEY_VERSION, flush=True
        )
        self._apply_reply(protocol.KEY_VERSION, protocol.CMD_QUERY_VERSION, result)
        return self._measurement.firmware_version

    def query_frc_value(self) -> Optional[int]:
        """Ask the device for its forced recalibration reference.

        While streaming only the command is written; the reader thread parses
        the FRC= reply and frc_value updates once it arrives.

        Returns:
            The stored FRC value, or None while streaming

        Raises:
            CommandTimeout: If no reply arrives
            CommandFailure: If the reply is not OK
        """
        if self._state == SessionState.STREAMING:
            self._write_while_streaming(protocol.CMD_QUERY_FRC)
            return None

        result = self._exchange(protocol.CMD_QUERY_FRC, expect_key=protocol.KEY_FRC, flush=True)
        self._apply_reply(protocol.KEY_FRC, protocol.CMD_QUERY_FRC, result)
        return self._measurement.frc_value

    def set_frc_value(self, value: int) -> bool:
        """Set the forced recalibration reference (ppm).

        Args:
            value: Reference concentration, 400-2000 inclusive

        Returns:
            True if the device acknowledged (always True while streaming,
            where the reply is handled by the reader thread)

        Raises:
            ValidationError: If value is out of range (nothing is sent)
        """
        if not (protocol.FRC_MIN <= value <= protocol.FRC_MAX):
            raise ValidationError(
                f"FRC value must be {protocol.FRC_MIN}-{protocol.FRC_MAX}, got {value}"
            )

        cmd = protocol.make_set_frc_cmd(value)
        logger.info(f"Setting FRC value to {value}...")

        if self._state == SessionState.STREAMING:
            self._write_while_streaming(cmd)
            return True

        result = self._exchange(cmd, expect_key=protocol.KEY_FRC)
        if result.ok:
            self._measurement.apply_line(f"{protocol.KEY_FRC}={value}")
        return result.ok

    # ========================================================================
    # Streaming Session
    # ========================================================================

    def start_measurement(self, cancel: Optional[threading.Event] = None) -> bool:
        """Send STA and hand the stream to a background reader thread.

        Any text read during the handshake but not consumed by it is passed to
        the reader thread, so measurement lines that arrived together with
        the acknowledgement are not lost.

        Args:
            cancel: Session cancellation event. Setting it ends the reader
                    thread. A new event is created if None.

        Returns:
            True if streaming started. False if the device did not
            acknowledge; the transport is closed in that case.

        Raises:
            SessionStateError: If not connected or already streaming
            TransportReadError: If serial I/O fails (transport is closed first)
        """
        with self._state_lock:
            if self._state in (SessionState.STARTING, SessionState.STREAMING):
                raise SessionStateError(f"Measurement already running (state: {self._state.value})")
            transport = self._require_transport()

            if cancel is None:
                cancel = threading.Event()

            logger.info("Starting measurement...")
            self._state = SessionState.STARTING

            with self._io_lock:
                try:
                    transport.flush_input()
                    transport.write_cmd(protocol.CMD_START)
                    result = self._read_result(transport, cancel)
                except TransportReadError:
                    logger.error("Serial failure during start handshake, closing port")
                    transport.close()
                    self._state = SessionState.IDLE
                    raise

            if not result.ok:
                logger.error(f"Failed to start measurement: {result.response!r}")
                transport.close()
                self._state = SessionState.IDLE
                return False

            self._fault = None
            self._cancel = cancel
            self._state = SessionState.STREAMING
            self._start_reader_thread(transport, result.remainder, cancel)

        logger.info("Measurement started")
        return True

    def stop_measurement(self) -> None:
        """Send STP and cancel the reader thread.

        Raises:
            SessionStateError: If measurement is not streaming
            TransportReadError: If the STP write fails (thread is still stopped)
        """
        with self._state_lock:
            if self._state != SessionState.STREAMING:
                raise SessionStateError(
                    f"Cannot stop from state {self._state.value}. Not streaming."
                )
            transport = self._require_transport()

            logger.info("Stopping measurement...")
            try:
                with self._io_lock:
                    transport.write_cmd(protocol.CMD_STOP)
            finally:
                self._stop_reader_thread()
                self._state = SessionState.STOPPED
            logger.info("Measurement stopped")

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the reader thread ends.

        Returns:
            True if no reader thread is running afterwards
        """
        thread = self._reader_thread
        if thread is not None:
            thread.join(timeout=timeout)
            return not thread.is_alive()
        return True

    # ========================================================================
    # Data Access
    # ========================================================================

    def snapshot(self) -> Measurement:
        """Get a consistent copy of all measurement fields (thread-safe)."""
        return self._measurement.snapshot()

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def fault(self) -> Optional[TransportReadError]:
        """Error that ended the last measurement stream, if any."""
        return self._fault

    @property
    def device_id(self) -> str:
        return self._measurement.device_id

    @property
    def firmware_version(self) -> str:
        return self._measurement.firmware_version

    @property
    def frc_value(self) -> int:
        return self._measurement.frc_value

    @property
    def timestamp(self) -> Optional[datetime]:
        """UTC time of the last CO2/humidity/temperature update."""
        return self._measurement.timestamp

    @property
    def co2(self) -> int:
        """CO2 concentration in ppm."""
        return self._measurement.co2

    @property
    def humidity(self) -> float:
        """Relative humidity in percent."""
        return self._measurement.humidity

    @property
    def temperature(self) -> float:
        """Temperature in Celsius."""
        return self._measurement.temperature

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _require_transport(self) -> Transport:
        """Return the open transport or raise."""
        if self._transport is None or not self._transport.is_open:
            raise SessionStateError("Not connected")
        return self._transport

    def _ensure_not_streaming(self, cmd: str) -> None:
        """Raise if the reader thread currently owns the transport's input."""
        if self._state == SessionState.STREAMING:
            raise SessionStateError(
                f"Cannot send {cmd!r} while streaming; replies belong to the reader thread"
            )

    def _read_result(
        self,
        transport: Transport,
        cancel: Optional[threading.Event] = None,
        expect_key: Optional[str] = None,
    ) -> CommandResult:
        """Read reply lines until an OK line or the read budget runs out.

        With expect_key, an OK payload is only taken as the reply when it has
        no "=" or starts with "<expect_key>="; other OK lines are skipped.

        Caller must hold self._io_lock.
        """
        remainder = ""
        last_line: Optional[str] = None

        for _ in range(protocol.MAX_RESULT_READS):
            lines, remainder = transport.read_lines(remainder, cancel=cancel, max_reads=1)
            for i, line in enumerate(lines):
                if not line.strip():
                    continue
                ok, payload = parsing.parse_ok_reply(line)
                if ok and not _payload_matches(payload, expect_key):
                    logger.debug(f"Skipping unrelated OK line: {line!r}")
                    continue
                if ok:
                    rest = parsing.join_lines(lines[i + 1:], remainder)
                    return CommandResult(response=payload, ok=True, remainder=rest)
                logger.debug(f"Skipping non-OK reply line: {line!r}")
                last_line = payload

            if cancel is not None and cancel.is_set():
                logger.debug("Reply wait cancelled")
                break

        return CommandResult(response=last_line, ok=False, remainder=remainder)

    def _apply_reply(self, key: str, cmd: str, result: CommandResult) -> None:
        """Store a query reply payload, raising if the query failed."""
        if not result.ok:
            if result.response is None:
                raise CommandTimeout(f"No reply to {cmd!r}")
            raise CommandFailure(f"{cmd!r} rejected: {result.response!r}")

        payload = result.response or ""
        if protocol.KEY_VALUE_SEPARATOR not in payload:
            payload = f"{key}{protocol.KEY_VALUE_SEPARATOR}{payload}"
        self._measurement.apply_line(payload)

    def _write_while_streaming(self, cmd: str) -> None:
        """Write a command without reading; the reader thread sees the reply."""
        transport = self._require_transport()
        with self._io_lock:
            transport.write_cmd(cmd)

    def _start_reader_thread(
        self, transport: Transport, remainder: str, cancel: threading.Event
    ) -> None:
        """Start background thread to read the measurement stream."""
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            args=(transport, remainder, cancel),
            name="MeasurementReader",
            daemon=True,
        )
        self._reader_thread.start()
        logger.debug(f"Started measurement reader thread with {len(remainder)} handed-off chars")

    def _stop_reader_thread(self) -> None:
        """Cancel and join the reader thread if running."""
        if self._cancel is not None:
            self._cancel.set()

        thread = self._reader_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            logger.debug("Stopping reader thread...")
            thread.join(timeout=5.0)

            if thread.is_alive():
                logger.warning("Reader thread did not stop cleanly")

        self._reader_thread = None
        self._cancel = None

    def _reader_loop(
        self, transport: Transport, remainder: str, cancel: threading.Event
    ) -> None:
        """Background thread loop for streaming mode.

        Continuously reads lines, strips the OK echo and applies each line to
        the measurement record, in arrival order.
        """
        logger.info(f"Measurement reader loop started (thread {threading.get_ident()})")
        buffer = remainder

        try:
            while not cancel.is_set():
                lines, buffer = transport.read_lines(buffer, cancel=cancel)
                for line in lines:
                    line = parsing.strip_ok_prefix(line)
                    if line:
                        self._measurement.apply_line(line)
        except TransportReadError as e:
            if cancel.is_set():
                logger.debug(f"Read ended during shutdown: {e}")
            else:
                logger.error(f"Measurement stream failed: {e}", exc_info=True)
                self._handle_fault(transport, e)

        logger.info("Measurement reader loop stopped")

    def _handle_fault(self, transport: Transport, error: TransportReadError) -> None:
        """Record a fatal stream error and close the link.

        Runs on the reader thread; does not take the state lock so that a
        concurrent stop/disconnect joining this thread cannot deadlock.
        """
        transport.close()
        self._fault = error
        self._state = SessionState.STOPPED

        if self._on_fault is not None:
            self._on_fault(error)
