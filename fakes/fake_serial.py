"""Fake serial port that simulates the UD-CO2S sensor protocol.

Emulates the CRLF command set (ID?, VER?, STA, STP, FRC?, FRC=<n>), the
periodic measurement stream after STA, and the byte-level quirks a real port
shows: short reads, NUL-padded fixed-size buffers, and I/O failures.
"""

import logging
import threading
import time
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class FakeUDCO2S:
    """Deterministic simulator of UD-CO2S firmware behavior.

    Implements:
    - Identity and version queries with "OK KEY=value" replies
    - Streaming of "OK CO2=...,HUM=...,TMP=..." lines after STA until STP
    - FRC query and range-checked set
    - "NG" for unknown commands
    - Scripted raw replies per command (overrides built-in handling)
    - Chunked or NUL-padded reads, and injected read failures
    """

    def __init__(
        self,
        device_id: str = "UD-CO2S-TEST",
        firmware_version: str = "1.2.3",
        frc_value: int = 400,
        period_s: float = 0.05,
        chunk_size: Optional[int] = None,
        pad_nuls: bool = False,
        replies: Optional[Dict[str, bytes]] = None,
    ) -> None:
        """Initialize fake sensor.

        Args:
            device_id: Value returned for ID?
            firmware_version: Value returned for VER?
            frc_value: Initial forced recalibration reference
            period_s: Interval between streamed measurement lines
            chunk_size: If set, each read returns at most this many bytes
            pad_nuls: If True, reads return exactly `size` bytes, NUL padded
            replies: Raw bytes to emit for a command instead of the built-in reply
        """
        self.device_id = device_id
        self.firmware_version = firmware_version
        self.frc_value = frc_value
        self.period_s = period_s
        self.chunk_size = chunk_size
        self.pad_nuls = pad_nuls
        self.replies: Dict[str, bytes] = dict(replies or {})

        # Values emitted by the stream; tests may change them at any time
        self.co2 = 415
        self.humidity = 45.2
        self.temperature = 23.1

        # Every command received, in order
        self.commands: List[str] = []

        # When True, the next read raises (simulates unplugged device)
        self.fail_reads = False

        self._output = bytearray()
        self._input_buffer = bytearray()
        self._cond = threading.Condition()

        self._stream_thread: Optional[threading.Thread] = None
        self._stop_streaming = threading.Event()

        # Port state
        self.is_open = True
        self.timeout = 0.02

    def close(self) -> None:
        """Close the fake serial port."""
        self._stop_streaming_thread()
        with self._cond:
            self.is_open = False
            self._cond.notify_all()
        logger.debug("FakeUDCO2S closed")

    def write(self, data: bytes) -> int:
        """Write data to device (from host perspective).

        Handles commands terminated with CRLF.

        Returns:
            Number of bytes written
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")

        self._input_buffer.extend(data)
        logger.debug(f"FakeUDCO2S received: {data!r}")

        while b"\r\n" in self._input_buffer:
            idx = self._input_buffer.index(b"\r\n")
            cmd = bytes(self._input_buffer[:idx]).decode("ascii", errors="ignore")
            self._input_buffer = self._input_buffer[idx + 2:]
            self.commands.append(cmd)
            self._handle_command(cmd)

        return len(data)

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes of device output.

        Blocks for at most self.timeout seconds, then returns b"" like a
        pyserial port with a read timeout.
        """
        with self._cond:
            if not self.is_open:
                raise RuntimeError("Port is closed")
            if self.fail_reads:
                raise OSError("device reports readiness to read but returned no data")

            if not self._output:
                self._cond.wait(timeout=self.timeout)
                if self.fail_reads:
                    raise OSError("device reports readiness to read but returned no data")

            limit = min(size, self.chunk_size) if self.chunk_size else size
            data = bytes(self._output[:limit])
            del self._output[:limit]

        if self.pad_nuls:
            data = data + b"\x00" * (size - len(data))
        return data

    def flush(self) -> None:
        """Flush output buffer (no-op for fake serial)."""
        pass

    def reset_input_buffer(self) -> None:
        """Discard pending device output."""
        with self._cond:
            self._output.clear()
        logger.debug("FakeUDCO2S input buffer flushed")

    def inject(self, data: bytes) -> None:
        """Queue raw bytes as if the device had sent them."""
        with self._cond:
            self._output.extend(data)
            self._cond.notify_all()

    @property
    def streaming(self) -> bool:
        """True while the measurement stream thread is running."""
        return self._stream_thread is not None and self._stream_thread.is_alive()

    # ========================================================================
    # Internal: Command Handling
    # ========================================================================

    def _handle_command(self, cmd: str) -> None:
        """Dispatch one command to its reply."""
        if cmd in self.replies:
            self.inject(self.replies[cmd])
            return

        if cmd == "ID?":
            self._send_line(f"OK ID={self.device_id}")
        elif cmd == "VER?":
            self._send_line(f"OK VER={self.firmware_version}")
        elif cmd == "STA":
            self._send_line("OK STA")
            self._start_streaming_thread()
        elif cmd == "STP":
            self._stop_streaming_thread()
            self._send_line("OK STP")
        elif cmd == "FRC?":
            self._send_line(f"OK FRC={self.frc_value}")
        elif cmd.startswith("FRC="):
            self._handle_set_frc(cmd[len("FRC="):])
        else:
            self._send_line("NG")

    def _handle_set_frc(self, value_str: str) -> None:
        """Handle FRC=<n>; device range is 400-2000."""
        try:
            value = int(value_str)
        except ValueError:
            self._send_line("NG")
            return

        if 400 <= value <= 2000:
            self.frc_value = value
            self._send_line(f"OK FRC={value}")
        else:
            self._send_line("NG")

    # ========================================================================
    # Internal: Output Generation
    # ========================================================================

    def _send_line(self, text: str) -> None:
        """Send a line with CRLF terminator."""
        self.inject(text.encode("ascii") + b"\r\n")

    def _send_measurement_line(self) -> None:
        """Send one streamed measurement line."""
        self._send_line(
            f"OK CO2={self.co2},HUM={self.humidity:.1f},TMP={self.temperature:.1f}"
        )

    # ========================================================================
    # Internal: Threading
    # ========================================================================

    def _start_streaming_thread(self) -> None:
        """Start background thread to generate measurement lines."""
        if self.streaming:
            return
        self._stop_streaming.clear()
        self._stream_thread = threading.Thread(
            target=self._streaming_loop,
            name="FakeSensorStream",
            daemon=True,
        )
        self._stream_thread.start()
        logger.debug("Started measurement streaming thread")

    def _stop_streaming_thread(self) -> None:
        """Stop streaming thread if running."""
        if self._stream_thread and self._stream_thread.is_alive():
            self._stop_streaming.set()
            self._stream_thread.join(timeout=2.0)
            self._stream_thread = None
            logger.debug("Stopped streaming thread")

    def _streaming_loop(self) -> None:
        """Background loop to send measurement lines."""
        logger.debug(f"Streaming loop started, period={self.period_s:.3f}s")

        while not self._stop_streaming.is_set():
            self._send_measurement_line()
            time.sleep(self.period_s)

        logger.debug("Streaming loop stopped")
