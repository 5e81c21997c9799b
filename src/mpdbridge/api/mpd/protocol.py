"""MPD protocol parsing utilities.

MPD uses a simple line-based text protocol:
- Commands are sent as plain text lines
- Responses are key-value pairs: "key: value"
- Responses end with "OK" or "ACK [error@command_listNum] {command} message"
- Binary responses (albumart, readpicture) embed a raw payload announced
  by a "binary: <size>" field, followed by a newline and the final "OK"

Reference: https://mpd.readthedocs.io/en/stable/protocol.html
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Protocol

from mpdbridge.api.mpd.types import (
    LoopMode,
    MpdResponse,
    Paused,
    PlaybackState,
    PlayerStatus,
    Playing,
    SongRef,
    Stopped,
)


class MpdProtocolError(Exception):
    """Malformed line or frame received from MPD."""


class MissingFieldError(Exception):
    """A status response lacks mandatory fields."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(f"Missing fields from MPD status: {', '.join(fields)}")


class MpdErrorType(Enum):
    """ACK error codes understood by this client.

    See MPD's src/protocol/Ack.hxx. Any other code maps to UNKNOWN;
    the raw code is always kept on MpdError.
    """

    NOT_LIST = 1
    BAD_ARGUMENT = 2
    BAD_PASSWORD = 3
    PERMISSION = 4
    NO_EXIST = 50
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code: int) -> MpdErrorType:
        """Map a numeric ACK code to its error type."""
        if code < 0:
            return cls.UNKNOWN
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


class MpdError(Exception):
    """MPD protocol error (an ACK response)."""

    def __init__(
        self,
        code: int,
        command: str,
        message: str,
        command_list_no: int = 0,
    ) -> None:
        self.code = code
        self.error_type = MpdErrorType.from_code(code)
        self.command = command
        self.message = message
        self.command_list_no = command_list_no
        super().__init__(f"MPD error {code} in {command}: {message}")

    @property
    def is_no_exist(self) -> bool:
        """Return True if MPD reported a missing resource."""
        return self.error_type is MpdErrorType.NO_EXIST


class LineReader(Protocol):
    """The subset of asyncio.StreamReader used for framing."""

    async def readline(self) -> bytes: ...

    async def readexactly(self, n: int) -> bytes: ...


# Pattern for field lines: name: value
FIELD_PATTERN = re.compile(r"([A-Za-z_-]+): ([^\n]*)\n")

# Pattern for ACK responses: ACK [error@command_listNum] {current_command} message_text
ACK_PATTERN = re.compile(r"ACK \[(\d+)@(\d+)\] \{([A-Za-z_]*)\} ?([^\n]*)\n")

BINARY_FIELD = "binary"


def parse_field_line(line: str) -> tuple[str, str]:
    """Parse a single "name: value" line.

    Args:
        line: The raw line, including its trailing newline.

    Returns:
        Tuple of (name, value).

    Raises:
        MpdProtocolError: If the line is not a well-formed field.
    """
    match = FIELD_PATTERN.fullmatch(line)
    if not match:
        raise MpdProtocolError(f"Malformed MPD field line: {line!r}")
    return match.group(1), match.group(2)


def parse_error_line(line: str) -> MpdError:
    """Parse an ACK line into an MpdError.

    The error is returned, not raised, so callers decide how to propagate it.

    Args:
        line: The raw ACK line, including its trailing newline.

    Returns:
        MpdError describing the failure.

    Raises:
        MpdProtocolError: If the line is not a well-formed ACK.
    """
    match = ACK_PATTERN.fullmatch(line)
    if not match:
        raise MpdProtocolError(f"Malformed MPD error line: {line!r}")
    return MpdError(
        code=int(match.group(1)),
        command=match.group(3),
        message=match.group(4),
        command_list_no=int(match.group(2)),
    )


async def _read_text_line(reader: LineReader) -> str:
    try:
        raw = await reader.readline()
    except ValueError as e:
        # StreamReader drops the oversized line, so the stream is out of sync
        raise MpdProtocolError(f"MPD response line too long: {e}") from e
    if not raw:
        raise ConnectionResetError("Connection closed by MPD")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MpdProtocolError(f"Invalid UTF-8 in MPD response: {raw!r}") from e


async def read_response(reader: LineReader) -> MpdResponse:
    """Read one complete response from MPD.

    Reads field lines until "OK" or "ACK". A "binary: <n>" field switches
    to payload mode: exactly n raw bytes follow, then a newline, then the
    terminating "OK".

    Args:
        reader: Stream to read from.

    Returns:
        MpdResponse with all fields in order and the binary payload, if any.

    Raises:
        MpdError: If MPD answered with an ACK.
        MpdProtocolError: If a line or binary frame is malformed.
        ConnectionResetError: If the stream was closed.
        asyncio.IncompleteReadError: If the stream ended inside a payload.
    """
    fields: list[tuple[str, str]] = []

    while True:
        line = await _read_text_line(reader)

        if line.startswith("OK"):
            return MpdResponse(tuple(fields))

        if line.startswith("ACK"):
            raise parse_error_line(line)

        name, value = parse_field_line(line)
        fields.append((name, value))

        if name == BINARY_FIELD:
            try:
                size = int(value)
            except ValueError as e:
                raise MpdProtocolError(f"Invalid binary length: {value!r}") from e
            if size < 0:
                raise MpdProtocolError(f"Invalid binary length: {value!r}")

            payload = await reader.readexactly(size)
            terminator = await reader.readexactly(1)
            if terminator != b"\n":
                raise MpdProtocolError(f"Expected newline after binary chunk, got: {terminator!r}")

            ok_line = await _read_text_line(reader)
            if not ok_line.startswith("OK"):
                raise MpdProtocolError(f"Expected OK after binary chunk, got: {ok_line!r}")
            return MpdResponse(tuple(fields), payload)


def _parse_flag(name: str, value: str) -> bool:
    if value == "0":
        return False
    if value == "1":
        return True
    raise MpdProtocolError(f"Invalid field {name}: expected 0/1, got {value!r}")


def _parse_number(name: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as e:
        raise MpdProtocolError(f"Invalid field {name}: {value!r}") from e


def _parse_song_ref(status: MpdResponse, pos_key: str, id_key: str) -> SongRef | None:
    pos = status.get(pos_key)
    song_id = status.get(id_key)
    if pos is None or song_id is None:
        return None
    return SongRef(
        pos=int(_parse_number(pos_key, pos, int)),
        id=int(_parse_number(id_key, song_id, int)),
    )


def parse_metadata(response: MpdResponse) -> dict[str, tuple[str, ...]]:
    """Group a currentsong/playlistinfo record into tag -> values."""
    return {name: tuple(values) for name, values in response.field_map().items()}


def parse_status(status: MpdResponse, metadata: MpdResponse | None = None) -> PlayerStatus:
    """Build a PlayerStatus from a status response.

    A missing or unparsable playlistlength is read as 0 rather than
    rejected; every other malformed field raises.

    Args:
        status: Response to the "status" command.
        metadata: Response to "currentsong", if a song is active.

    Returns:
        New PlayerStatus. album_art is left unset.

    Raises:
        MissingFieldError: If a mandatory field is absent.
        MpdProtocolError: If a field has an invalid value.
    """
    required = ["state", "repeat", "single", "random"]
    state = status.get("state")
    active = state in ("play", "pause")
    if active:
        required += ["volume", "elapsed", "duration"]

    missing = [name for name in required if not status.has(name)]
    if missing:
        raise MissingFieldError(missing)

    def value(name: str) -> str:
        return status.get(name) or ""

    playback: PlaybackState
    if active:
        elapsed = float(_parse_number("elapsed", value("elapsed"), float))
        duration = float(_parse_number("duration", value("duration"), float))
        playback = Playing(elapsed, duration) if state == "play" else Paused(elapsed, duration)
    elif state == "stop":
        playback = Stopped()
    else:
        raise MpdProtocolError(f"Invalid field state: {state!r}")

    volume: int | None = None
    raw_volume = status.get("volume")
    if raw_volume is not None:
        volume = int(_parse_number("volume", raw_volume, int))
        if volume < 0:
            # MPD reports -1 when there is no mixer
            volume = None
        elif volume > 100:
            raise MpdProtocolError(f"Invalid field volume: {raw_volume!r}")

    try:
        playlist_length = int(status.get("playlistlength") or 0)
    except ValueError:
        playlist_length = 0

    return PlayerStatus(
        playback=playback,
        loop=LoopMode.from_flags(
            _parse_flag("repeat", value("repeat")),
            _parse_flag("single", value("single")),
        ),
        random=_parse_flag("random", value("random")),
        volume=volume,
        song=_parse_song_ref(status, "song", "songid"),
        next_song=_parse_song_ref(status, "nextsong", "nextsongid"),
        playlist_length=playlist_length,
        metadata=parse_metadata(metadata) if metadata is not None else {},
    )


def escape_arg(arg: str) -> str:
    """Escape an argument for MPD command.

    MPD requires arguments with spaces or special chars to be quoted.
    Inside quotes, backslash and double-quote must be escaped.

    Args:
        arg: The argument to escape.

    Returns:
        Escaped argument, quoted if necessary.
    """
    # If no special characters, return as-is
    if arg and not any(c in arg for c in ' "\t\n\\\''):
        return arg
    return quote_arg(arg)


def quote_arg(arg: str) -> str:
    """Always quote an argument, escaping backslashes and double quotes."""
    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_command(command: str, *args: str) -> str:
    """Format an MPD command with arguments.

    Args:
        command: The MPD command name.
        *args: Command arguments.

    Returns:
        Formatted command string (without newline).
    """
    if not args:
        return command
    escaped_args = [escape_arg(arg) for arg in args]
    return f"{command} {' '.join(escaped_args)}"
