"""Tests for MPD connection."""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from mpdbridge.api.mpd import ConnectionState, MpdConnection, MpdConnectionError, MpdError
from mpdbridge.api.mpd.client import STREAM_LIMIT
from mpdbridge.api.mpd.protocol import MpdProtocolError


class MockStreamReader:
    """Mock asyncio StreamReader for testing."""

    def __init__(self, responses: list[bytes]) -> None:
        self._responses = responses
        self._index = 0
        self._buffer = b""

    async def readline(self) -> bytes:
        """Read a line from mock data."""
        while b"\n" not in self._buffer:
            if self._index >= len(self._responses):
                line, self._buffer = self._buffer, b""
                return line
            self._buffer += self._responses[self._index]
            self._index += 1

        line, self._buffer = self._buffer.split(b"\n", 1)
        return line + b"\n"

    async def readexactly(self, n: int) -> bytes:
        """Read exactly n bytes."""
        while len(self._buffer) < n:
            if self._index >= len(self._responses):
                raise asyncio.IncompleteReadError(self._buffer, n)
            self._buffer += self._responses[self._index]
            self._index += 1

        data = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return data


class MockStreamWriter:
    """Mock asyncio StreamWriter for testing."""

    def __init__(self) -> None:
        self.data: list[bytes] = []
        self._closed = False

    def write(self, data: bytes) -> None:
        """Record written data."""
        self.data.append(data)

    async def drain(self) -> None:
        """Mock drain."""
        if self._closed:
            raise ConnectionResetError("closed")

    def close(self) -> None:
        """Mark as closed."""
        self._closed = True

    async def wait_closed(self) -> None:
        """Mock wait_closed."""

    def is_closing(self) -> bool:
        """Check if closing."""
        return self._closed


@pytest.fixture
def mock_connection():
    """Create mock connection for testing."""

    def _mock_connection(responses: list[bytes]):
        reader = MockStreamReader(responses)
        writer = MockStreamWriter()
        return reader, writer

    return _mock_connection


GREETING = b"OK MPD 0.23.5\n"


class TestMpdConnectionConnect:
    """Tests for MpdConnection connection handling."""

    @pytest.mark.asyncio
    async def test_connect_success(self, mock_connection) -> None:
        """Test successful connection."""
        reader, writer = mock_connection([GREETING])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            conn = MpdConnection("localhost")
            await conn.connect()

            assert conn.is_connected
            assert conn.state is ConnectionState.CONNECTED
            assert conn.version == "0.23.5"

            await conn.disconnect()
            assert not conn.is_connected
            assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_timeout(self) -> None:
        """Test connection timeout."""
        with patch("asyncio.open_connection", side_effect=TimeoutError()):
            conn = MpdConnection("localhost")
            with pytest.raises(MpdConnectionError) as excinfo:
                await conn.connect()
            assert "timed out" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connect_refused(self) -> None:
        """Test connection refused."""
        with patch(
            "asyncio.open_connection",
            side_effect=OSError("Connection refused"),
        ):
            conn = MpdConnection("localhost")
            with pytest.raises(MpdConnectionError) as excinfo:
                await conn.connect()
            assert "Connection refused" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connect_invalid_greeting(self, mock_connection) -> None:
        """Test invalid greeting."""
        reader, writer = mock_connection([b"INVALID\n"])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            conn = MpdConnection("localhost")
            with pytest.raises(MpdConnectionError) as excinfo:
                await conn.connect()
            assert "Invalid MPD greeting" in str(excinfo.value)
            assert not conn.is_connected

    @pytest.mark.asyncio
    async def test_connect_with_password(self, mock_connection) -> None:
        """Test that the password is sent after the greeting."""
        reader, writer = mock_connection([GREETING, b"OK\n"])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            conn = MpdConnection("localhost", password="secret")
            await conn.connect()

        assert writer.data == [b"password secret\n"]
        assert conn.is_connected

    @pytest.mark.asyncio
    async def test_connect_bad_password(self, mock_connection) -> None:
        """Test that a rejected password raises MpdError."""
        reader, writer = mock_connection(
            [GREETING, b"ACK [3@0] {password} incorrect password\n"]
        )

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            conn = MpdConnection("localhost", password="wrong")
            with pytest.raises(MpdError) as excinfo:
                await conn.connect()
        assert excinfo.value.code == 3
        assert not conn.is_connected

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_connection) -> None:
        """Test async context manager."""
        reader, writer = mock_connection([GREETING])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                assert conn.is_connected
            assert not conn.is_connected


class TestMpdConnectionCommands:
    """Tests for issue_command."""

    @pytest.mark.asyncio
    async def test_issue_command(self, mock_connection) -> None:
        """Test that a command is written with a newline and framed."""
        reader, writer = mock_connection(
            [GREETING, b"volume: 75\nstate: play\nOK\n"]
        )

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                response = await conn.issue_command("status")

        assert writer.data == [b"status\n"]
        assert response.fields == (("volume", "75"), ("state", "play"))
        assert response.binary is None

    @pytest.mark.asyncio
    async def test_binary_command(self, mock_connection) -> None:
        """Test a response with a binary payload split across reads."""
        image = b"\xff\xd8\xff\xe0" + b"\x00" * 100
        reader, writer = mock_connection(
            [
                GREETING,
                f"size: {len(image)}\nbinary: {len(image)}\n".encode() + image[:50],
                image[50:] + b"\nOK\n",
            ]
        )

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                response = await conn.issue_command('albumart "a.mp3" 0')

        assert response.binary == image
        assert response.get("size") == str(len(image))

    @pytest.mark.asyncio
    async def test_ack_propagates(self, mock_connection) -> None:
        """Test that an ACK is raised as MpdError."""
        reader, writer = mock_connection(
            [GREETING, b"ACK [2@0] {setvol} Invalid volume value\n"]
        )

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                with pytest.raises(MpdError) as excinfo:
                    await conn.issue_command("setvol 500")

        assert excinfo.value.command == "setvol"

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        """Test issuing a command before connecting."""
        conn = MpdConnection("localhost")
        with pytest.raises(MpdConnectionError):
            await conn.issue_command("ping")

    @pytest.mark.asyncio
    async def test_stream_closed(self, mock_connection) -> None:
        """Test that EOF becomes MpdConnectionError."""
        reader, writer = mock_connection([GREETING, b"state: pl"])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                with pytest.raises(MpdConnectionError):
                    await conn.issue_command("status")

    @pytest.mark.asyncio
    async def test_truncated_binary(self, mock_connection) -> None:
        """Test that a payload cut short becomes MpdConnectionError."""
        reader, writer = mock_connection([GREETING, b"binary: 100\nabc"])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                with pytest.raises(MpdConnectionError):
                    await conn.issue_command('readpicture "a.mp3" 0')

    @pytest.mark.asyncio
    async def test_protocol_error_propagates(self, mock_connection) -> None:
        """Test that a malformed line is raised as MpdProtocolError."""
        reader, writer = mock_connection([GREETING, b"garbage line\nOK\n"])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                with pytest.raises(MpdProtocolError):
                    await conn.issue_command("status")
                assert not conn.is_connected
                with pytest.raises(MpdConnectionError):
                    await conn.issue_command("ping")

    @pytest.mark.asyncio
    async def test_oversized_line(self, mock_connection) -> None:
        """Test that a line over the stream limit closes the connection."""
        reader, writer = mock_connection([GREETING])

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost") as conn:
                with patch.object(
                    reader,
                    "readline",
                    side_effect=ValueError("Separator is found, but chunk is longer than limit"),
                ):
                    with pytest.raises(MpdProtocolError):
                        await conn.issue_command("currentsong")
                assert not conn.is_connected
                assert writer.is_closing()

    @pytest.mark.asyncio
    async def test_stream_limit(self, mock_connection) -> None:
        """Test that long tag lines fit in the stream buffer."""
        reader, writer = mock_connection([GREETING])

        with patch("asyncio.open_connection", return_value=(reader, writer)) as mock_open:
            async with MpdConnection("localhost", 6601):
                pass

        mock_open.assert_called_once_with("localhost", 6601, limit=STREAM_LIMIT)
        assert STREAM_LIMIT > 64 * 1024

    @pytest.mark.asyncio
    async def test_command_timeout(self, mock_connection) -> None:
        """Test that a slow response becomes MpdConnectionError."""
        reader, writer = mock_connection([GREETING])

        async def hang() -> bytes:
            await asyncio.sleep(10)
            return b""

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdConnection("localhost", command_timeout=0.01) as conn:
                with patch.object(reader, "readline", side_effect=hang):
                    with pytest.raises(MpdConnectionError) as excinfo:
                        await conn.issue_command("status")
        assert "timed out" in str(excinfo.value)


class TestMpdConnectionReconnect:
    """Tests for reconnect handling."""

    @pytest.mark.asyncio
    async def test_reconnect_replaces_stream(self, mock_connection) -> None:
        """Test that reconnect opens a new stream and reads a new greeting."""
        first = mock_connection([GREETING])
        second = mock_connection([b"OK MPD 0.24.0\n", b"OK\n"])

        with patch("asyncio.open_connection", side_effect=[first, second]):
            conn = MpdConnection("localhost")
            await conn.connect()
            await conn.reconnect()
            await conn.issue_command("ping")

        assert first[1].is_closing()
        assert conn.version == "0.24.0"
        assert second[1].data == [b"ping\n"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [0, 1, 4])
    async def test_reconnect_until_success(
        self, failures: int, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test N failures then success take N+1 attempts and one error log."""
        conn = MpdConnection("localhost", retry_interval=0)
        side_effect = [MpdConnectionError("refused")] * failures + [None]

        with caplog.at_level(logging.DEBUG, logger="mpdbridge.api.mpd.client"):
            with patch.object(conn, "reconnect", AsyncMock(side_effect=side_effect)) as mock:
                await conn.reconnect_until_success()

        assert mock.await_count == failures + 1
        assert conn.state is ConnectionState.CONNECTED
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == min(failures, 1)
        retries = [r for r in caplog.records if "Attempt" in r.getMessage()]
        assert len(retries) == max(failures - 1, 0)

    @pytest.mark.asyncio
    async def test_reconnect_survives_bad_password(self) -> None:
        """Test that an ACK during reconnect is retried, not raised."""
        conn = MpdConnection("localhost", retry_interval=0)
        side_effect = [MpdError(3, "password", "incorrect password"), None]

        with patch.object(conn, "reconnect", AsyncMock(side_effect=side_effect)) as mock:
            await conn.reconnect_until_success()

        assert mock.await_count == 2

    @pytest.mark.asyncio
    async def test_connect_until_success(self, mock_connection) -> None:
        """Test that the initial connect retries until MPD is up."""
        reader, writer = mock_connection([GREETING])

        with patch(
            "asyncio.open_connection",
            side_effect=[OSError("refused"), OSError("refused"), (reader, writer)],
        ) as mock_open:
            conn = MpdConnection("localhost", retry_interval=0)
            await conn.connect_until_success()

        assert mock_open.call_count == 3
        assert conn.is_connected
