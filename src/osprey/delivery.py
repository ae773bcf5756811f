"""TLS connection to the log aggregation endpoint."""

import asyncio
import logging
import ssl
from dataclasses import dataclass

from .errors import DeliveryError, TrustError
from .sources.base import LogLine

logger = logging.getLogger(__name__)


def parse_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` address. Raises ValueError if it is malformed."""
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Expected host:port, got {address!r}")
    return host, int(port)


def load_trust(pem_file: str | None) -> ssl.SSLContext:
    """
    Build a client SSL context that verifies the endpoint.

    With no pem_file the system's default CA certificates are used.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.check_hostname = True
    try:
        if pem_file:
            ctx.load_verify_locations(pem_file)
        else:
            ctx.load_default_certs()
    except (OSError, ssl.SSLError) as e:
        raise TrustError(f"Failed loading certificates from {pem_file}: {e}") from e
    return ctx


@dataclass(frozen=True)
class ConnectionState:
    """A live connection. Replaced as a whole on reconnect."""

    address: str
    ssl_context: ssl.SSLContext
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter


class DeliveryConnection:
    """
    Sole consumer of the fan-in channel.

    A failed write is treated as a lost connection: the connection is redialled
    once and the write retried once. Any further failure raises DeliveryError.
    """

    def __init__(self, address: str, pem_file: str | None = None, connect_timeout: float = 10.0):
        self.address = address
        self.host, self.port = parse_address(address)
        self.pem_file = pem_file
        self.connect_timeout = connect_timeout
        self.state: ConnectionState | None = None
        self.lines_sent = 0
        self.reconnects = 0

    async def _dial(self) -> ConnectionState:
        ctx = load_trust(self.pem_file)
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port, ssl=ctx, server_hostname=self.host),
            self.connect_timeout,
        )
        return ConnectionState(address=self.address, ssl_context=ctx, reader=reader, writer=writer)

    async def connect(self) -> None:
        """Establish the TLS connection."""
        try:
            self.state = await self._dial()
        except (OSError, asyncio.TimeoutError) as e:
            raise DeliveryError(f"Unable to connect to {self.address}: {e}") from e
        logger.info("Connected to %s", self.address)

    async def reconnect(self) -> None:
        self.reconnects += 1
        await self._close_state()
        await self.connect()

    async def _send(self, data: bytes) -> None:
        if self.state is None or self.state.writer.is_closing():
            raise ConnectionResetError("connection is closed")
        self.state.writer.write(data)
        await self.state.writer.drain()

    async def write(self, data: bytes) -> None:
        try:
            await self._send(data)
        except OSError as e:
            logger.warning("Connection lost (%s), attempting reconnect", e)
            try:
                await self.reconnect()
                await self._send(data)
            except (OSError, DeliveryError) as retry_error:
                raise DeliveryError(f"Unable to reconnect: {retry_error}") from retry_error
        self.lines_sent += 1

    async def run(self, channel: asyncio.Queue) -> None:
        """Drain the channel forever, writing each line to the endpoint."""
        while True:
            line: LogLine = await channel.get()
            try:
                data = line.to_bytes()
                logger.debug("Sending %r", data)
                await self.write(data)
            finally:
                channel.task_done()

    async def _close_state(self) -> None:
        state, self.state = self.state, None
        if state is None:
            return
        state.writer.close()
        try:
            await state.writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing connection: %s", e)

    async def close(self) -> None:
        await self._close_state()
        logger.info("Closed connection to %s (%d lines sent)", self.address, self.lines_sent)
