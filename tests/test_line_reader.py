"""Tests for reassembling the serial byte stream into lines."""

import random
import threading
import time

import pytest

from fakes.fake_serial import FakeUDCO2S
from udco2s_lib.errors import TransportReadError
from udco2s_lib.parsing import join_lines, split_lines
from udco2s_lib.transport import Transport

STREAM = (
    b"OK STA\r\n"
    b"OK CO2=415,HUM=45.2,TMP=23.1\r\n"
    b"OK CO2=416,HUM=45.3,TMP=23.0\r\n"
    b"\r\n"
    b"OK CO2=417,HUM=45.1,TMP=22.9\r\n"
    b"OK CO2=41"
)

EXPECTED_LINES = [
    "OK STA",
    "OK CO2=415,HUM=45.2,TMP=23.1",
    "OK CO2=416,HUM=45.3,TMP=23.0",
    "",
    "OK CO2=417,HUM=45.1,TMP=22.9",
]


def _fake(**kwargs) -> FakeUDCO2S:
    """Fake port with a near-zero read timeout so draining is fast."""
    fake_serial = FakeUDCO2S(**kwargs)
    fake_serial.timeout = 0.001
    return fake_serial


def _drain(transport: Transport, max_reads: int = 64) -> tuple:
    """Collect every complete line the transport yields until input runs dry."""
    lines: list = []
    remainder = ""
    while True:
        got, remainder = transport.read_lines(remainder, max_reads=max_reads)
        if not got:
            return lines, remainder
        lines.extend(got)


def test_split_lines_without_terminator() -> None:
    """No CRLF means no complete line; text is kept as remainder."""
    assert split_lines("OK CO2=4") == ([], "OK CO2=4")
    assert split_lines("") == ([], "")


def test_split_lines_keeps_trailing_partial() -> None:
    """All parts but the last are lines; the last (maybe empty) is the remainder."""
    assert split_lines("A\r\nB\r\nC") == (["A", "B"], "C")
    assert split_lines("A\r\n") == (["A"], "")


def test_split_lines_lone_cr_is_not_a_terminator() -> None:
    """A CR without LF stays in the remainder until the LF arrives."""
    lines, remainder = split_lines("A\r")
    assert lines == []
    lines, remainder = split_lines(remainder + "\nB")
    assert lines == ["A"]
    assert remainder == "B"


def test_join_lines_restores_split_input() -> None:
    """join_lines re-terminates lines in front of the remainder."""
    text = "A\r\nB\r\nC"
    assert join_lines(*split_lines(text)) == text


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 7, 16, 128])
def test_read_lines_chunking_invariance(chunk_size: int) -> None:
    """Lines come out identical however the bytes were split into reads."""
    fake_serial = _fake(chunk_size=chunk_size)
    fake_serial.inject(STREAM)
    transport = Transport(fake_serial)

    lines, remainder = _drain(transport)

    assert lines == EXPECTED_LINES
    assert remainder == "OK CO2=41"


def test_read_lines_random_chunk_boundaries() -> None:
    """Randomly sized chunks reassemble the same lines."""
    rng = random.Random(1234)
    for _ in range(20):
        fake_serial = _fake()
        pos = 0
        while pos < len(STREAM):
            step = rng.randint(1, 9)
            fake_serial.inject(STREAM[pos:pos + step])
            pos += step
        fake_serial.chunk_size = rng.randint(1, 11)

        lines, remainder = _drain(Transport(fake_serial))

        assert lines == EXPECTED_LINES
        assert remainder == "OK CO2=41"


def test_read_lines_strips_nul_padding() -> None:
    """Fixed-size NUL-padded reads yield the same text as unpadded ones."""
    fake_serial = _fake(chunk_size=4, pad_nuls=True)
    fake_serial.inject(STREAM)

    lines, remainder = _drain(Transport(fake_serial))

    assert lines == EXPECTED_LINES
    assert "\x00" not in remainder
    assert remainder == "OK CO2=41"


def test_read_lines_returns_complete_lines_in_remainder_without_reading() -> None:
    """Lines already in the carried remainder are returned before any read."""
    fake_serial = FakeUDCO2S()
    fake_serial.fail_reads = True  # any read would raise
    transport = Transport(fake_serial)

    lines, remainder = transport.read_lines("CO2=400,HUM=50.0,TMP=20.0\r\nCO2=4")

    assert lines == ["CO2=400,HUM=50.0,TMP=20.0"]
    assert remainder == "CO2=4"


def test_read_lines_empty_reads_are_retried() -> None:
    """Zero-length reads are not end-of-stream; data arriving later is returned."""
    fake_serial = FakeUDCO2S()
    transport = Transport(fake_serial)

    def late_writer() -> None:
        time.sleep(0.2)
        fake_serial.inject(b"OK VER=1.2.3\r\n")

    writer = threading.Thread(target=late_writer)
    writer.start()
    lines, remainder = transport.read_lines("")
    writer.join()

    assert lines == ["OK VER=1.2.3"]
    assert remainder == ""


def test_read_lines_cancelled_returns_promptly() -> None:
    """A set cancel event ends the wait with no lines and the buffer intact."""
    fake_serial = FakeUDCO2S()
    fake_serial.inject(b"OK CO2=4")
    transport = Transport(fake_serial)
    cancel = threading.Event()

    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    start = time.monotonic()
    lines, remainder = transport.read_lines("", cancel=cancel)
    elapsed = time.monotonic() - start
    timer.cancel()

    assert lines == []
    assert remainder == "OK CO2=4"
    assert elapsed < 1.0


def test_read_lines_already_cancelled_keeps_remainder() -> None:
    """Cancelled before the call: remainder comes back unchanged, nothing is read."""
    fake_serial = FakeUDCO2S()
    fake_serial.inject(b"more\r\n")
    cancel = threading.Event()
    cancel.set()

    lines, remainder = Transport(fake_serial).read_lines("partial", cancel=cancel)

    assert lines == []
    assert remainder == "partial"


def test_read_lines_max_reads_bounds_wait() -> None:
    """max_reads stops after that many reads without a complete line."""
    fake_serial = FakeUDCO2S()
    transport = Transport(fake_serial)

    lines, remainder = transport.read_lines("abc", max_reads=3)

    assert lines == []
    assert remainder == "abc"


def test_read_error_is_raised() -> None:
    """An I/O failure surfaces as TransportReadError."""
    fake_serial = FakeUDCO2S()
    fake_serial.fail_reads = True

    with pytest.raises(TransportReadError):
        Transport(fake_serial).read_lines("")


def test_read_on_closed_port_raises() -> None:
    """Reading a closed port is a TransportReadError, not a silent empty result."""
    fake_serial = FakeUDCO2S()
    transport = Transport(fake_serial)
    transport.close()

    with pytest.raises(TransportReadError):
        transport.read_chunk()


def test_write_cmd_appends_crlf() -> None:
    """Commands are sent terminated by CRLF."""
    fake_serial = FakeUDCO2S()
    Transport(fake_serial).write_cmd("ID?")

    assert fake_serial.commands == ["ID?"]


def test_write_failures_raise_transport_read_error(monkeypatch) -> None:
    """Writes and flushes report failures through the same error as reads."""
    fake_serial = FakeUDCO2S()
    transport = Transport(fake_serial)

    def broken_write(data: bytes) -> int:
        raise OSError("write failed")

    monkeypatch.setattr(fake_serial, "write", broken_write)
    with pytest.raises(TransportReadError, match="write failed"):
        transport.write_cmd("ID?")

    transport.close()
    with pytest.raises(TransportReadError):
        transport.write_cmd("ID?")
    with pytest.raises(TransportReadError):
        transport.flush_input()
