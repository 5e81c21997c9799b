"""Async MPD connection.

One MpdConnection owns one TCP stream to MPD and runs at most one command
at a time on it. A broken stream is re-opened with reconnect_until_success(),
which retries forever: MPD is expected to come back eventually.

Example:
    async with MpdConnection("192.168.1.100") as conn:
        response = await conn.issue_command("status")
        print(response.get("state"))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Self

from mpdbridge.api.mpd.protocol import MpdError, MpdProtocolError, format_command, read_response
from mpdbridge.api.mpd.types import MpdResponse

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6600
CONNECT_TIMEOUT = 5.0
DEFAULT_RETRY_INTERVAL = 5.0
STREAM_LIMIT = 1024 * 1024  # longest accepted response line (lyrics, comments)

_GREETING_PREFIX = "OK MPD "


class MpdConnectionError(Exception):
    """Connection to MPD failed or was lost."""


class ConnectionState(Enum):
    """Lifecycle of an MpdConnection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class MpdConnection:
    """Async connection to an MPD server.

    Attributes:
        host: MPD server hostname or IP.
        port: MPD server port (default 6600).
        password: Optional password, sent after every (re)connect.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        command_timeout: float | None = None,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
    ) -> None:
        """Initialize the connection. Nothing is opened until connect().

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            password: Optional password for authentication.
            command_timeout: Seconds to wait for a response, or None to wait
                forever (required for idle).
            retry_interval: Seconds between reconnect attempts.
        """
        self.host = host
        self.port = port
        self.password = password
        self.command_timeout = command_timeout
        self.retry_interval = retry_interval

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()
        self._version: str = ""
        self._state = ConnectionState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        """Return True if connected to MPD."""
        return (
            self._state is ConnectionState.CONNECTED
            and self._writer is not None
            and not self._writer.is_closing()
        )

    @property
    def state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._state

    @property
    def version(self) -> str:
        """Return MPD protocol version from initial handshake."""
        return self._version

    async def connect(self) -> None:
        """Connect to MPD server and consume the greeting.

        Raises:
            MpdConnectionError: If connection fails.
            MpdError: If authentication fails.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=STREAM_LIMIT),
                timeout=CONNECT_TIMEOUT,
            )

            # Read greeting: "OK MPD version"
            raw = await self._reader.readline()
            greeting = raw.decode("utf-8", errors="replace").rstrip("\n")
            if not greeting.startswith(_GREETING_PREFIX):
                await self._close_stream()
                raise MpdConnectionError(f"Invalid MPD greeting: {greeting!r}")
            self._version = greeting[len(_GREETING_PREFIX):]

        except TimeoutError as e:
            await self._close_stream()
            raise MpdConnectionError(f"Connection to {self.host}:{self.port} timed out") from e
        except OSError as e:
            await self._close_stream()
            raise MpdConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        if self.password:
            try:
                await self.issue_command(format_command("password", self.password))
            except MpdError:
                await self._close_stream()
                raise

        self._state = ConnectionState.CONNECTED
        logger.info("Connected to MPD %s at %s:%d", self._version, self.host, self.port)

    async def disconnect(self) -> None:
        """Disconnect from MPD server."""
        self._state = ConnectionState.DISCONNECTED
        if self._writer:
            await self._close_stream()
            logger.info("Disconnected from MPD")

    async def _close_stream(self) -> None:
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return
        try:
            writer.close()
            await writer.wait_closed()
        except (OSError, TimeoutError, asyncio.CancelledError) as e:
            logger.debug("Expected error while closing MPD stream: %s", e)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        """Async context manager exit."""
        await self.disconnect()

    async def reconnect(self) -> None:
        """Tear down the stream and open a fresh one.

        Raises:
            MpdConnectionError: If the new connection fails.
        """
        await self._close_stream()
        await self.connect()

    async def reconnect_until_success(self) -> None:
        """Reconnect, retrying every retry_interval seconds until it works.

        Only the first failure is logged at error level; later attempts
        log at debug so an MPD outage doesn't flood the log.
        """
        self._state = ConnectionState.RECONNECTING
        logger.warning("MPD connection to %s:%d broken, reconnecting...", self.host, self.port)
        attempts = await self._retry(self.reconnect, "Reconnect failed")
        self._state = ConnectionState.CONNECTED
        logger.info("Reconnected to MPD after %d attempt(s)", attempts)

    async def connect_until_success(self) -> None:
        """Open the initial connection, retrying like reconnect_until_success()."""
        self._state = ConnectionState.RECONNECTING
        await self._retry(self.connect, "Failed to connect to MPD server")
        self._state = ConnectionState.CONNECTED

    async def _retry(self, attempt_fn: Callable[[], Awaitable[None]], first_message: str) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                await attempt_fn()
            except (MpdConnectionError, MpdError) as e:
                if attempt == 1:
                    logger.error(
                        "%s: %s. Will retry every %.0fs...",
                        first_message,
                        e,
                        self.retry_interval,
                    )
                else:
                    logger.debug("Attempt %d to reach MPD failed: %s", attempt, e)
                await asyncio.sleep(self.retry_interval)
                continue
            return attempt

    async def issue_command(self, cmd: str) -> MpdResponse:
        """Send a command and wait for its complete response.

        Args:
            cmd: Command line, without the trailing newline.

        Returns:
            The framed response, including any binary payload.

        Raises:
            MpdConnectionError: If not connected or the stream fails.
            MpdError: If MPD answered with an ACK.
            MpdProtocolError: If the response is malformed. The stream is
                closed, so the next command fails until reconnect().
        """
        async with self._lock:
            if not self._writer or not self._reader:
                raise MpdConnectionError("Not connected")

            logger.debug("MPD command: %s", cmd)
            try:
                self._writer.write(f"{cmd}\n".encode())
                await self._writer.drain()
                response = await asyncio.wait_for(
                    read_response(self._reader),
                    timeout=self.command_timeout,
                )
            except TimeoutError as e:
                raise MpdConnectionError(f"Command {cmd!r} timed out") from e
            except (OSError, EOFError) as e:
                raise MpdConnectionError(f"Connection lost during {cmd!r}: {e}") from e
            except MpdProtocolError:
                # Unread parts of the response are still buffered
                await self._close_stream()
                raise

            logger.debug("MPD command %s returned", cmd)
            return response
