"""Pure functions for splitting the byte stream and parsing protocol lines."""

import logging
from typing import Iterator, List, Tuple, Union

from udco2s_lib import protocol
from udco2s_lib.errors import MalformedLine

logger = logging.getLogger(__name__)

Value = Union[int, float, str]

_CONVERTERS = {
    protocol.KEY_CO2: int,
    protocol.KEY_HUMIDITY: float,
    protocol.KEY_TEMPERATURE: float,
    protocol.KEY_ID: str,
    protocol.KEY_VERSION: str,
    protocol.KEY_FRC: int,
}


def split_lines(text: str) -> Tuple[List[str], str]:
    """Split accumulated text into complete lines and a trailing remainder.

    Args:
        text: Everything received so far that has not been consumed

    Returns:
        Tuple of (complete lines in arrival order, remainder). If no CRLF is
        present, the line list is empty and the remainder is the input.
    """
    parts = text.split(protocol.LINE_TERMINATOR)
    if len(parts) == 1:
        return [], text
    return parts[:-1], parts[-1]


def join_lines(lines: List[str], remainder: str) -> str:
    """Inverse of split_lines: re-terminate lines and prepend them to remainder."""
    return "".join(line + protocol.LINE_TERMINATOR for line in lines) + remainder


def strip_ok_prefix(line: str) -> str:
    """Remove a leading "OK " echo from a streamed line."""
    if line.startswith(protocol.OK_PREFIX):
        return line[len(protocol.OK_PREFIX):]
    return line


def parse_ok_reply(line: str) -> Tuple[bool, str]:
    """Classify a command reply line.

    Args:
        line: One complete line (CRLF already removed)

    Returns:
        (True, payload) for "OK <payload>" or bare "OK", else (False, line)
    """
    result = line.rstrip(" \r\n")
    if result == protocol.OK_WORD:
        return True, ""
    if result.startswith(protocol.OK_PREFIX):
        return True, result[len(protocol.OK_PREFIX):]
    return False, result


def parse_line(line: str) -> Iterator[Tuple[str, Value]]:
    """Yield recognized (key, value) pairs from a KEY=VALUE,... line.

    Tokens are converted lazily in order, so a caller applying each pair as it
    is yielded keeps the updates made before a bad token.

    Example: "CO2=415,HUM=45.2,TMP=23.1" yields
        ("CO2", 415), ("HUM", 45.2), ("TMP", 23.1)

    Args:
        line: Raw line from device ("OK " echo should be stripped by caller)

    Yields:
        (key, converted value) for keys CO2, HUM, TMP, ID, VER and FRC.
        Unknown keys and tokens without "=" are skipped.

    Raises:
        MalformedLine: If a recognized numeric key has an unparseable value
    """
    for token in line.split(protocol.TOKEN_SEPARATOR):
        key, sep, raw = token.partition(protocol.KEY_VALUE_SEPARATOR)
        key = key.strip()
        converter = _CONVERTERS.get(key)
        if converter is None or not sep:
            if key:
                logger.debug(f"Ignoring token {token!r}")
            continue

        raw = raw.strip()
        if converter is not str and "_" in raw:
            # int() and float() accept digit separators; the device never sends them
            raise MalformedLine(f"Bad value for {key}: {raw!r} in line {line!r}")
        try:
            value = converter(raw)
        except ValueError as e:
            raise MalformedLine(f"Bad value for {key}: {raw!r} in line {line!r}") from e
        yield key, value
