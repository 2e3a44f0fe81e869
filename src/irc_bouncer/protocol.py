"""Protocol constants and line framing for IRC connections.

Handles:
- Protocol constants (frame limits, terminator)
- CRLF-delimited line decoding from a stream
- PRIVMSG segmentation to respect the frame ceiling
- Frame parsing and origin nick extraction
- SASL PLAIN credential encoding
"""

from __future__ import annotations

import base64
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

# =============================================================================
# Protocol Constants
# =============================================================================

# RFC 1459 hard limit, terminator included
MAX_FRAME_BYTES: int = 512

# Some networks (libera.chat) truncate well below the RFC limit
DEFAULT_EFFECTIVE_CEILING: int = 446

TERMINATOR: bytes = b"\r\n"

ENCODING: str = "utf-8"

_NEWLINE_RE = re.compile(r"\r\n|\r|\n")


class ProtocolError(Exception):
    """Raised when a line from the server cannot be decoded."""

    pass


class AsyncLineReader(Protocol):
    """Protocol for async line readers (duck typing for StreamReader)."""

    async def readline(self) -> bytes:
        """Read a line asynchronously."""
        ...


# =============================================================================
# Decoding
# =============================================================================


async def read_line(reader: AsyncLineReader) -> str | None:
    """Read one protocol line from the stream.

    Args:
        reader: The stream to read from

    Returns:
        The line without its CRLF terminator, or None at end of stream
    """
    data = await reader.readline()
    if not data:
        return None
    if data.endswith(TERMINATOR):
        data = data[: -len(TERMINATOR)]
    elif data.endswith(b"\n"):
        data = data[:-1]
    return data.decode(ENCODING, errors="replace")


async def iter_lines(reader: AsyncLineReader) -> AsyncIterator[str]:
    """Yield protocol lines until the stream closes.

    Iteration can be started again on the same reader; it picks up at the
    next unread line.
    """
    while True:
        line = await read_line(reader)
        if line is None:
            return
        yield line


@dataclass(frozen=True)
class Frame:
    """A parsed protocol line."""

    prefix: str | None
    command: str
    params: list[str] = field(default_factory=list)

    @property
    def trailing(self) -> str:
        """Everything after the first param, joined back with spaces."""
        return " ".join(self.params[1:])


def parse_line(line: str) -> Frame:
    """Split a line into its optional prefix, command and params.

    Params are split on single spaces, the way they arrived; the leading
    colon of a trailing param is kept.

    Raises:
        ProtocolError: If the line has no command token
    """
    tokens = line.split(" ")
    prefix = None
    if tokens[0].startswith(":"):
        prefix = tokens.pop(0)
    if not tokens or not tokens[0]:
        raise ProtocolError(f"Received line without a command: {line!r}")
    return Frame(prefix=prefix, command=tokens[0].upper(), params=tokens[1:])


def nick_from_prefix(prefix: str) -> str:
    """Extract the nick from a ``:nick!user@host`` source prefix.

    Raises:
        ProtocolError: If the prefix has no ``!`` or the nick is empty
    """
    if "!" not in prefix:
        raise ProtocolError(f"Unable to parse username from {prefix!r}")
    nick = prefix.split("!", 1)[0].removeprefix(":")
    if not nick:
        raise ProtocolError(f"Unable to parse username from {prefix!r}")
    return nick


# =============================================================================
# Encoding
# =============================================================================


def encode_frame(line: str) -> bytes:
    """Encode a single protocol line, terminator included.

    Raises:
        ProtocolError: If the line embeds a line break or exceeds 512 bytes
    """
    if "\r" in line or "\n" in line:
        raise ProtocolError(f"Refusing to send line with embedded newline: {line!r}")
    data = line.encode(ENCODING) + TERMINATOR
    if len(data) > MAX_FRAME_BYTES:
        raise ProtocolError(
            f"Frame of {len(data)} bytes exceeds the {MAX_FRAME_BYTES} byte limit"
        )
    return data


def collapse_newlines(text: str) -> str:
    """Replace every line break with a single space."""
    return _NEWLINE_RE.sub(" ", text)


def privmsg_prefix(channel: str) -> str:
    return f"PRIVMSG {channel} :"


def encode_privmsg(
    channel: str,
    text: str,
    ceiling: int = DEFAULT_EFFECTIVE_CEILING,
) -> list[bytes]:
    """Split text into PRIVMSG frames that fit under the ceiling.

    The cut is a naive fixed-width byte split: a multi-byte character that
    straddles a boundary is split across two frames.

    Args:
        channel: The target channel
        text: The message text, may contain newlines
        ceiling: Maximum frame size in bytes, terminator included

    Returns:
        The frames in order, empty when there is no text

    Raises:
        ValueError: If the ceiling leaves no room for payload
    """
    if ceiling > MAX_FRAME_BYTES:
        raise ValueError(f"ceiling {ceiling} exceeds {MAX_FRAME_BYTES}")

    prefix = privmsg_prefix(channel).encode(ENCODING)
    budget = ceiling - len(TERMINATOR) - len(prefix)
    if budget <= 0:
        raise ValueError(f"channel {channel!r} leaves no room under ceiling {ceiling}")

    payload = collapse_newlines(text).encode(ENCODING)
    return [
        prefix + payload[offset : offset + budget] + TERMINATOR
        for offset in range(0, len(payload), budget)
    ]


def sasl_plain_payload(identity: str, secret: str) -> str:
    """Build the base64 SASL PLAIN credential (authzid, authcid, password)."""
    raw = f"{identity}\x00{identity}\x00{secret}".encode(ENCODING)
    return base64.b64encode(raw).decode("ascii")
