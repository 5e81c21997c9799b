"""MPD protocol data types.

This module defines frozen dataclasses for MPD responses and the
player status snapshot built from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class MpdResponse:
    """One complete MPD response.

    Attributes:
        fields: (name, value) pairs in the order received. Names may repeat.
        binary: Raw payload for binary responses (albumart, readpicture).
    """

    fields: tuple[tuple[str, str], ...] = ()
    binary: bytes | None = None

    def get(self, name: str) -> str | None:
        """Return the first value for a field name, or None."""
        for key, value in self.fields:
            if key == name:
                return value
        return None

    def values(self, name: str) -> list[str]:
        """Return all values for a field name, in order."""
        return [value for key, value in self.fields if key == name]

    def has(self, name: str) -> bool:
        """Return True if the field is present at least once."""
        return any(key == name for key, _ in self.fields)

    def field_map(self) -> dict[str, list[str]]:
        """Group values by field name, preserving order within each name."""
        result: dict[str, list[str]] = {}
        for key, value in self.fields:
            result.setdefault(key, []).append(value)
        return result

    def split(self, boundary: str = "file") -> list[MpdResponse]:
        """Split a multi-record response at each occurrence of a field.

        Used for list responses such as playlistinfo, where each song
        starts with a "file" field.
        """
        records: list[list[tuple[str, str]]] = []
        for key, value in self.fields:
            if key == boundary or not records:
                records.append([])
            records[-1].append((key, value))
        return [MpdResponse(tuple(r)) for r in records]


class Subsystem(Enum):
    """Subsystems reported by the idle command."""

    STORED_PLAYLIST = "stored_playlist"
    PLAYLIST = "playlist"
    PLAYER = "player"
    MIXER = "mixer"
    OPTIONS = "options"

    @classmethod
    def from_name(cls, name: str) -> Subsystem | None:
        """Return the subsystem for a name, or None if unrecognized."""
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class Playing:
    """Playback running. Times are in seconds."""

    elapsed: float
    duration: float


@dataclass(frozen=True)
class Paused:
    """Playback paused. Times are in seconds."""

    elapsed: float
    duration: float


@dataclass(frozen=True)
class Stopped:
    """Nothing playing."""


PlaybackState = Playing | Paused | Stopped


def playback_name(state: PlaybackState) -> str:
    """Return "Playing", "Paused" or "Stopped"."""
    return type(state).__name__


class LoopMode(Enum):
    """Loop mode derived from MPD's repeat and single flags."""

    NONE = "None"
    TRACK = "Track"
    PLAYLIST = "Playlist"

    @classmethod
    def from_flags(cls, repeat: bool, single: bool) -> LoopMode:
        """Combine MPD's repeat/single flags into a loop mode."""
        if repeat and single:
            return cls.TRACK
        if repeat:
            return cls.PLAYLIST
        return cls.NONE


@dataclass(frozen=True)
class SongRef:
    """Identity of a song in the current playlist.

    Attributes:
        pos: Position in the current playlist.
        id: MPD song ID, stable while the song stays in the playlist.
    """

    pos: int
    id: int


@dataclass(frozen=True)
class PlayerStatus:
    """Immutable snapshot of the MPD player.

    A new instance is built for every refresh; fields are never mutated.

    Attributes:
        playback: Playing, Paused or Stopped.
        loop: Loop mode.
        random: Shuffle enabled.
        volume: Volume 0-100, or None if MPD has no mixer.
        song: Current song, if any.
        next_song: Next song, if any.
        playlist_length: Number of songs in the current playlist.
        metadata: Tags of the current song. Tags may repeat (several artists).
        album_art: Path to the cached cover image, if any.
    """

    playback: PlaybackState = field(default_factory=Stopped)
    loop: LoopMode = LoopMode.NONE
    random: bool = False
    volume: int | None = None
    song: SongRef | None = None
    next_song: SongRef | None = None
    playlist_length: int = 0
    metadata: dict[str, tuple[str, ...]] = field(default_factory=dict, hash=False)
    album_art: Path | None = None

    @property
    def is_playing(self) -> bool:
        """Return True if currently playing."""
        return isinstance(self.playback, Playing)

    @property
    def is_paused(self) -> bool:
        """Return True if paused."""
        return isinstance(self.playback, Paused)

    @property
    def is_stopped(self) -> bool:
        """Return True if stopped."""
        return isinstance(self.playback, Stopped)

    @property
    def can_set_volume(self) -> bool:
        """Return True if MPD reported a mixer."""
        return self.volume is not None

    def tag(self, name: str) -> str:
        """Return the first value of a metadata tag, or an empty string."""
        values = self.metadata.get(name)
        return values[0] if values else ""

    @property
    def title(self) -> str:
        """Return the track title."""
        return self.tag("Title")

    @property
    def artist(self) -> str:
        """Return all artists joined for display."""
        return ", ".join(self.metadata.get("Artist", ()))

    @property
    def uri(self) -> str:
        """Return the song URI relative to MPD's music directory."""
        return self.tag("file")
