"""MPD client module.

This module provides the MPD line protocol codec and an async connection
that serializes commands and reconnects forever.

Example:
    from mpdbridge.api.mpd import MpdConnection

    async with MpdConnection("192.168.1.100") as conn:
        response = await conn.issue_command("status")
"""

from mpdbridge.api.mpd.client import ConnectionState, MpdConnection, MpdConnectionError
from mpdbridge.api.mpd.protocol import (
    MissingFieldError,
    MpdError,
    MpdErrorType,
    MpdProtocolError,
)
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

__all__ = [
    "ConnectionState",
    "LoopMode",
    "MissingFieldError",
    "MpdConnection",
    "MpdConnectionError",
    "MpdError",
    "MpdErrorType",
    "MpdProtocolError",
    "MpdResponse",
    "Paused",
    "PlaybackState",
    "PlayerStatus",
    "Playing",
    "SongRef",
    "Stopped",
]
