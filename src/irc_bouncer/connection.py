"""IRC connection lifecycle.

Each configured network gets one IRCConnection, which:
1. Opens the TCP stream (TLS wrapped when configured)
2. Registers with NICK/USER
3. Authenticates with SASL PLAIN when a password is set
4. Joins every configured channel
5. Multiplexes inbound lines and outgoing bus messages until the stream ends

There is no reconnect: any transport or decode failure closes the
connection and propagates to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from irc_bouncer.bus import MessageBus
from irc_bouncer.models import BouncerMessage, MessageState
from irc_bouncer.protocol import (
    DEFAULT_EFFECTIVE_CEILING,
    Frame,
    ProtocolError,
    encode_frame,
    encode_privmsg,
    nick_from_prefix,
    parse_line,
    iter_lines,
    read_line,
    sasl_plain_payload,
)

if TYPE_CHECKING:
    from irc_bouncer.config import ServerConfig

logger = logging.getLogger(__name__)

# IRCv3 SASL numerics
RPL_SASLSUCCESS = "903"
SASL_FAILURES = frozenset({"902", "904", "905", "906", "907", "908"})

# AUTHENTICATE payloads are sent in chunks of at most 400 bytes
SASL_CHUNK_SIZE = 400

CHANNEL_PREFIXES = ("#", "&", "+", "!")


class AuthenticationError(ProtocolError):
    """Raised when the SASL handshake does not complete."""

    pass


class ConnectionClosedError(ConnectionError):
    """Raised when the server closes the stream."""

    pass


class ConnectionState(Enum):
    CONNECTING = "connecting"
    REGISTERING = "registering"
    AUTHENTICATING = "authenticating"
    JOINING = "joining"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionHandle:
    """Static per-network settings.

    Attributes:
        address: ``host:port`` of the server, also the bus network key
        tls: Whether to wrap the stream in TLS
        nick: Nick used for registration and mention detection
        password: SASL secret; None disables authentication
        channels: Channels to join once registered
    """

    address: str
    tls: bool
    nick: str
    password: str | None = None
    channels: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, server: ServerConfig) -> ConnectionHandle:
        return cls(
            address=server.address,
            tls=server.tls,
            nick=server.nick,
            password=server.password or None,
            channels=tuple(channel.name for channel in server.channels),
        )

    @property
    def host(self) -> str:
        return self.address.rpartition(":")[0]

    @property
    def port(self) -> int:
        return int(self.address.rpartition(":")[2])


class IRCConnection:
    """One network's connection state machine.

    Attributes:
        handle: Static settings for this network
        state: Current lifecycle state
    """

    def __init__(
        self,
        handle: ConnectionHandle,
        bus: MessageBus,
        *,
        ceiling: int = DEFAULT_EFFECTIVE_CEILING,
    ) -> None:
        self.handle = handle
        self.state = ConnectionState.CONNECTING
        self._bus = bus
        self._ceiling = ceiling
        self._reader: StreamReader | None = None
        self._writer: StreamWriter | None = None

    @property
    def address(self) -> str:
        return self.handle.address

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    def _set_state(self, state: ConnectionState) -> None:
        logger.debug("[%s] %s -> %s", self.address, self.state.value, state.value)
        self.state = state

    # =========================================================================
    # Transport
    # =========================================================================

    async def open(self) -> None:
        """Open the stream, negotiating TLS before any protocol bytes."""
        self._set_state(ConnectionState.CONNECTING)
        if self.handle.tls:
            self._reader, self._writer = await asyncio.open_connection(
                self.handle.host,
                self.handle.port,
                ssl=ssl.create_default_context(),
                server_hostname=self.handle.host,
            )
        else:
            self._reader, self._writer = await asyncio.open_connection(
                self.handle.host, self.handle.port
            )
        logger.info(
            "Connected to %s%s", self.address, " (TLS)" if self.handle.tls else ""
        )

    async def _write(self, data: bytes) -> None:
        if self._writer is None:
            raise ConnectionClosedError(f"{self.address} is not connected")
        self._writer.write(data)
        await self._writer.drain()

    async def send_raw(self, line: str) -> None:
        """Send a single protocol line."""
        await self._write(encode_frame(line))

    async def _read(self) -> str | None:
        if self._reader is None:
            raise ConnectionClosedError(f"{self.address} is not connected")
        return await read_line(self._reader)

    async def close(self) -> None:
        """Close the stream. The connection cannot be reopened."""
        self._set_state(ConnectionState.CLOSED)
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(OSError):
                await self._writer.wait_closed()
            self._writer = None
            self._reader = None
            logger.info("Connection to %s closed", self.address)

    # =========================================================================
    # Handshake
    # =========================================================================

    async def register(self) -> None:
        """Declare our identity; requests the SASL capability first if needed."""
        self._set_state(ConnectionState.REGISTERING)
        nick = self.handle.nick
        if self.handle.password:
            await self.send_raw("CAP REQ :sasl")
        await self.send_raw(f"NICK {nick}")
        await self.send_raw(f"USER {nick} 8 * : {nick}")

    async def _wait_for(self, *commands: str) -> Frame:
        """Read until one of the commands arrives, answering PINGs meanwhile."""
        while True:
            line = await self._read()
            if line is None:
                raise AuthenticationError(
                    f"{self.address} closed the connection during authentication"
                )
            frame = parse_line(line)
            if frame.command == "PING":
                await self._pong(frame)
                continue
            if frame.command in commands:
                return frame
            logger.debug("[%s] %s", self.address, line)

    async def authenticate(self) -> None:
        """Run the SASL PLAIN exchange.

        Raises:
            AuthenticationError: If the server refuses at any step
        """
        self._set_state(ConnectionState.AUTHENTICATING)

        while True:
            frame = await self._wait_for("CAP")
            subcommand = frame.params[1].upper() if len(frame.params) > 1 else ""
            if subcommand == "NAK":
                raise AuthenticationError(f"{self.address} does not support SASL")
            if subcommand == "ACK":
                break

        await self.send_raw("AUTHENTICATE PLAIN")
        frame = await self._wait_for("AUTHENTICATE", *SASL_FAILURES)
        if frame.command != "AUTHENTICATE" or frame.params[:1] != ["+"]:
            raise AuthenticationError(
                f"{self.address} rejected SASL PLAIN ({frame.command})"
            )

        payload = sasl_plain_payload(self.handle.nick, self.handle.password or "")
        chunks = [
            payload[i : i + SASL_CHUNK_SIZE]
            for i in range(0, len(payload), SASL_CHUNK_SIZE)
        ]
        if len(payload) % SASL_CHUNK_SIZE == 0:
            chunks.append("+")
        for chunk in chunks:
            await self.send_raw(f"AUTHENTICATE {chunk}")

        frame = await self._wait_for(RPL_SASLSUCCESS, *SASL_FAILURES)
        if frame.command != RPL_SASLSUCCESS:
            raise AuthenticationError(
                f"SASL authentication failed on {self.address} ({frame.command})"
            )

        await self.send_raw("CAP END")
        logger.info("Authenticated to %s as %s", self.address, self.handle.nick)

    async def join(self) -> None:
        self._set_state(ConnectionState.JOINING)
        for channel in self.handle.channels:
            await self.send_raw(f"JOIN {channel}")

    # =========================================================================
    # Active phase
    # =========================================================================

    async def _pong(self, frame: Frame) -> None:
        if not frame.params:
            raise ProtocolError(f"Received invalid PING message from {self.address}")
        await self.send_raw(f"PONG {' '.join(frame.params)}")

    def _publish(self, frame: Frame, user: str, ping: bool) -> BouncerMessage:
        if not frame.params:
            raise ProtocolError(f"{frame.command} from {user} has no target")
        message = BouncerMessage(
            network=self.address,
            channel=frame.params[0],
            user=user,
            content=frame.trailing.removeprefix(":"),
            state=MessageState.INCOMING,
            ping=ping,
        )
        self._bus.publish(message)
        return message

    async def handle_line(self, line: str) -> BouncerMessage | None:
        """Dispatch one inbound line.

        Returns:
            The message published to the bus, if any

        Raises:
            ProtocolError: On an empty line, a PING without token, or a
                PRIVMSG/TOPIC whose origin nick cannot be parsed
        """
        frame = parse_line(line)

        if frame.command == "PING":
            await self._pong(frame)
            return None

        if frame.command in ("PRIVMSG", "NOTICE", "TOPIC") and frame.prefix:
            if frame.command == "NOTICE" and "!" not in frame.prefix:
                if frame.params and frame.params[0].startswith(CHANNEL_PREFIXES):
                    # Server notice to a channel, attributed to the server name
                    return self._publish(frame, frame.prefix.removeprefix(":"), ping=False)
                logger.info("[%s] %s", self.address, line)
                return None
            user = nick_from_prefix(frame.prefix)
            if frame.command == "TOPIC":
                return self._publish(frame, user, ping=False)
            ping = self.handle.nick in frame.trailing
            return self._publish(frame, user, ping=ping)

        logger.info("[%s] %s", self.address, line)
        return None

    async def dispatch_outgoing(self, message: BouncerMessage) -> int:
        """Write a bus message to this network if it is addressed here.

        Returns:
            Number of frames written
        """
        if message.state is not MessageState.OUTGOING or message.network != self.address:
            return 0
        frames = encode_privmsg(message.channel, message.content, self._ceiling)
        for frame in frames:
            await self._write(frame)
        return len(frames)

    async def run_active(self) -> None:
        """Serve inbound lines and outgoing messages until the stream ends.

        Whichever source is ready first is handled to completion before the
        next wait, so handlers for one connection never interleave.

        Raises:
            ConnectionClosedError: When the server closes the stream
        """
        if self._reader is None:
            raise ConnectionClosedError(f"{self.address} is not connected")
        self._set_state(ConnectionState.ACTIVE)
        lines = iter_lines(self._reader)
        read_task: asyncio.Future[str | None] | None = None
        bus_task: asyncio.Task[BouncerMessage] | None = None

        with self._bus.subscribe() as subscription:
            try:
                while True:
                    if read_task is None:
                        read_task = asyncio.ensure_future(anext(lines, None))
                    if bus_task is None:
                        bus_task = asyncio.create_task(subscription.get())

                    done, _ = await asyncio.wait(
                        {read_task, bus_task}, return_when=asyncio.FIRST_COMPLETED
                    )

                    if read_task in done:
                        line = read_task.result()
                        read_task = None
                        if line is None:
                            raise ConnectionClosedError(
                                f"{self.address} closed the connection"
                            )
                        await self.handle_line(line)

                    if bus_task in done:
                        message = bus_task.result()
                        bus_task = None
                        await self.dispatch_outgoing(message)
            finally:
                for task in (read_task, bus_task):
                    if task is not None and not task.done():
                        task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await task
                await lines.aclose()

    async def run(self) -> None:
        """Drive the connection from CONNECTING to CLOSED.

        Raises:
            OSError: On transport failure
            ProtocolError: On a line that cannot be decoded
            AuthenticationError: If SASL does not complete
            ConnectionClosedError: When the server ends the stream
        """
        try:
            await self.open()
            await self.register()
            if self.handle.password:
                await self.authenticate()
            await self.join()
            await self.run_active()
        finally:
            await self.close()
