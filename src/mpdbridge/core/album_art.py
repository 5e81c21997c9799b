"""Album art download from MPD into a local cache file.

MPD serves cover images in chunks: each response carries a "size" field
with the total image size and a "binary" payload of at most the server's
chunk size. The client keeps asking at increasing offsets until it has the
whole image.

Two sources are tried in order:
1. readpicture - picture embedded in the audio file's tags
2. albumart - cover file (cover.jpg etc.) in the song's directory
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from PySide6.QtCore import QStandardPaths

from mpdbridge.api.mpd.protocol import MpdError, quote_arg
from mpdbridge.api.mpd.types import MpdResponse

logger = logging.getLogger(__name__)

CommandIssuer = Callable[[str], Awaitable[MpdResponse]]

_ART_SUBDIR = Path("mpdbridge") / "album_art"


class AlbumArtError(Exception):
    """Album art lookup or download failed."""


@dataclass(frozen=True)
class ArtSource:
    """A way of fetching cover art from MPD.

    Attributes:
        name: Short name for logging.
        command: MPD command taking "<uri> <offset>".
    """

    name: str
    command: str

    def request(self, uri: str, offset: int) -> str:
        """Format the command for one chunk."""
        return f"{self.command} {quote_arg(uri)} {offset}"

    async def download(self, issue: CommandIssuer, uri: str, sink: BinaryIO) -> bool:
        """Download the complete image into sink.

        Args:
            issue: Coroutine function sending one command to MPD.
            uri: Song URI.
            sink: Binary file to write chunks to, in offset order.

        Returns:
            True if an image was written, False if this source has none.

        Raises:
            AlbumArtError: If a chunk is missing or malformed.
        """
        try:
            first = await issue(self.request(uri, 0))
        except MpdError as e:
            if e.is_no_exist:
                return False
            raise AlbumArtError(f"{self.command} failed for {uri}: {e}") from e

        if not first.binary:
            return False

        size_field = first.get("size")
        if size_field is None:
            raise AlbumArtError(f"{self.command} response has no size field")
        try:
            total = int(size_field)
        except ValueError as e:
            raise AlbumArtError(f"{self.command} returned invalid size {size_field!r}") from e

        sink.write(first.binary)
        received = len(first.binary)

        while received < total:
            try:
                chunk = await issue(self.request(uri, received))
            except MpdError as e:
                raise AlbumArtError(
                    f"{self.command} failed at offset {received} for {uri}: {e}"
                ) from e
            if not chunk.binary:
                raise AlbumArtError(
                    f"{self.command} returned no data at offset {received}/{total}"
                )
            sink.write(chunk.binary)
            received += len(chunk.binary)

        logger.debug("Fetched %d bytes of %s art for %s", received, self.name, uri)
        return True


EMBEDDED = ArtSource("embedded", "readpicture")
FOLDER = ArtSource("folder", "albumart")

ART_SOURCES: tuple[ArtSource, ...] = (EMBEDDED, FOLDER)


def default_art_dir() -> Path:
    """Return the cache directory for album art.

    Uses the platform runtime directory (e.g. $XDG_RUNTIME_DIR), falling
    back to the system temp directory.
    """
    runtime = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.RuntimeLocation)
    base = Path(runtime) if runtime else Path(tempfile.gettempdir())
    return base / _ART_SUBDIR


def art_path(art_dir: Path, song_id: str) -> Path:
    """Return the cache file path for a song ID."""
    return art_dir / song_id


async def update_album_art(
    issue: CommandIssuer,
    art_dir: Path,
    sources: tuple[ArtSource, ...] = ART_SOURCES,
) -> Path | None:
    """Download the current song's cover into art_dir/<song id>.

    Args:
        issue: Coroutine function sending one command to MPD.
        art_dir: Directory for cached covers.
        sources: Sources to try, in order.

    Returns:
        Path of the written image, or None if no source had art.

    Raises:
        AlbumArtError: If the current song is unknown or a download failed.
        MpdConnectionError: If the connection dropped.
    """
    current = await issue("currentsong")
    uri = current.get("file")
    if uri is None:
        raise AlbumArtError("Invalid MPD response: no current song uri")
    song_id = current.get("Id")
    if song_id is None:
        raise AlbumArtError("Invalid MPD response: no current song ID")

    try:
        art_dir.mkdir(parents=True, exist_ok=True)
        path = art_path(art_dir, song_id)
        path.unlink(missing_ok=True)
    except OSError as e:
        raise AlbumArtError(f"Cannot prepare album art cache {art_dir}: {e}") from e

    for source in sources:
        try:
            with path.open("wb") as sink:
                found = await source.download(issue, uri, sink)
                sink.flush()
        except OSError as e:
            path.unlink(missing_ok=True)
            raise AlbumArtError(f"Cannot write album art to {path}: {e}") from e
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        if found:
            logger.debug("Album art updated from %s image at %s", source.name, path)
            return path
        path.unlink(missing_ok=True)

    logger.debug("No album art found for %s", uri)
    return None


def remove_album_art(path: Path | None) -> None:
    """Delete a cached cover, ignoring files that are already gone."""
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove old album art %s: %s", path, e)
