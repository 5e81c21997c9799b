"""Central MPD state cache with change notifications.

The StateCache keeps the latest PlayerStatus snapshot and announces what
changed through a ChangeEventBus. It talks to MPD over two connections:

- a query connection for status refreshes, keepalive pings and commands
  from callers, serialized by a lock;
- an idle connection parked in MPD's "idle" long-poll, which returns
  whenever a watched subsystem changes.

Example:
    async with StateCache("192.168.1.100") as cache:
        events = cache.subscribe()
        async for event in events:
            print(event, cache.status.title)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import replace
from pathlib import Path
from typing import Self

from mpdbridge.api.mpd.client import DEFAULT_PORT, MpdConnection, MpdConnectionError
from mpdbridge.api.mpd.protocol import (
    MissingFieldError,
    MpdError,
    MpdProtocolError,
    parse_metadata,
    parse_status,
)
from mpdbridge.api.mpd.types import MpdResponse, PlayerStatus, Subsystem
from mpdbridge.core.album_art import (
    AlbumArtError,
    default_art_dir,
    remove_album_art,
    update_album_art,
)
from mpdbridge.core.events import DEFAULT_CAPACITY, ChangeEvent, ChangeEventBus, Subscription

logger = logging.getLogger(__name__)

IDLE_COMMAND = "idle stored_playlist playlist player mixer options"
DEFAULT_KEEPALIVE_INTERVAL = 55.0  # MPD drops idle clients after 60s by default
DEFAULT_RETRY_INTERVAL = 5.0
QUERY_TIMEOUT = 10.0

_REFRESH_SUBSYSTEMS = {Subsystem.PLAYER, Subsystem.MIXER, Subsystem.OPTIONS}


def diff_status(old: PlayerStatus, new: PlayerStatus) -> list[ChangeEvent]:
    """Return one event per field that differs between two snapshots.

    Playback is compared by kind only, so elapsed time ticking doesn't
    count as a change.
    """
    events: list[ChangeEvent] = []
    if type(old.playback) is not type(new.playback):
        events.append(ChangeEvent.PLAYBACK)
    if old.loop != new.loop:
        events.append(ChangeEvent.LOOP)
    if old.random != new.random:
        events.append(ChangeEvent.SHUFFLE)
    if old.song != new.song:
        events.append(ChangeEvent.SONG)
    if old.next_song != new.next_song:
        events.append(ChangeEvent.NEXT_SONG)
    if old.volume != new.volume:
        events.append(ChangeEvent.VOLUME)
    return events


class StateCache:
    """Cached MPD player state emitting change events.

    Readers use the `status` property, which always returns a complete,
    immutable snapshot. Consumers call subscribe() for their own event
    queue and issue_command() to send commands to MPD.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        *,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        art_dir: Path | None = None,
        event_capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        """Initialize the cache. Nothing connects until start().

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            password: Optional MPD password.
            keepalive_interval: Seconds between pings on the query connection.
            retry_interval: Seconds between reconnect attempts.
            art_dir: Album art cache directory (default: runtime dir).
            event_capacity: Queue size for each event subscriber.
        """
        self._host = host
        self._port = port
        self._keepalive_interval = keepalive_interval
        self._art_dir = art_dir if art_dir is not None else default_art_dir()

        self._query = MpdConnection(
            host,
            port,
            password,
            command_timeout=QUERY_TIMEOUT,
            retry_interval=retry_interval,
        )
        # No timeout: idle blocks until MPD reports a change
        self._idle = MpdConnection(host, port, password, retry_interval=retry_interval)
        self._query_lock = asyncio.Lock()

        self._status = PlayerStatus()
        self._bus = ChangeEventBus(event_capacity)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def host(self) -> str:
        """Return the MPD host."""
        return self._host

    @property
    def port(self) -> int:
        """Return the MPD port."""
        return self._port

    @property
    def art_dir(self) -> Path:
        """Return the album art cache directory."""
        return self._art_dir

    @property
    def status(self) -> PlayerStatus:
        """Return the latest published snapshot."""
        return self._status

    @property
    def is_running(self) -> bool:
        """Return True while the background loops are active."""
        return any(not task.done() for task in self._tasks)

    def subscribe(self) -> Subscription:
        """Return a new, independent event subscription."""
        return self._bus.subscribe()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Connect both connections, load the initial state, start loops.

        Waits until MPD is reachable; never fails because MPD is down.
        """
        await self._query.connect_until_success()
        await self._idle.connect_until_success()

        await self._refresh_logged()

        self._tasks = [
            asyncio.create_task(self._keepalive_loop(), name="mpd-keepalive"),
            asyncio.create_task(self._idle_loop(), name="mpd-idle"),
        ]
        logger.info("MPD state cache started for %s:%d", self._host, self._port)

    async def stop(self) -> None:
        """Cancel the background loops and close both connections."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks = []

        await self._idle.disconnect()
        await self._query.disconnect()
        logger.info("MPD state cache stopped")

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        """Async context manager exit."""
        await self.stop()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def issue_command(self, cmd: str) -> MpdResponse:
        """Send a command on the query connection.

        On a connection failure, reconnects once and retries the command
        once. A second failure is raised to the caller.

        Raises:
            MpdError: If MPD rejected the command.
            MpdConnectionError: If the retry also failed.
        """
        async with self._query_lock:
            try:
                return await self._query.issue_command(cmd)
            except MpdConnectionError as e:
                logger.error("Error executing command %r: %s", cmd, e)
                await self._query.reconnect_until_success()
                return await self._query.issue_command(cmd)

    async def playlist(self) -> list[dict[str, tuple[str, ...]]]:
        """Return the tags of every song in the current playlist."""
        response = await self.issue_command("playlistinfo")
        return [parse_metadata(record) for record in response.split("file")]

    async def update_status(self) -> None:
        """Refresh the snapshot from MPD and emit events for what changed.

        Raises:
            MissingFieldError: If the status response is incomplete.
            MpdProtocolError: If the status response is malformed.
            MpdError: If MPD rejected status/currentsong.
            MpdConnectionError: If the query connection failed.
        """
        async with self._query_lock:
            await self._update_status_locked()

    async def _update_status_locked(self) -> None:
        status = await self._query.issue_command("status")
        metadata = None
        if status.has("song"):
            metadata = await self._query.issue_command("currentsong")
        new = parse_status(status, metadata)

        old = self._status
        events = diff_status(old, new)

        reconnect = False
        if ChangeEvent.SONG in events:
            try:
                album_art = await self._fetch_album_art(new)
            except (MpdConnectionError, MpdProtocolError) as e:
                logger.error("Query connection failed while fetching album art: %s", e)
                album_art = None
                reconnect = True
            new = replace(new, album_art=album_art)
        else:
            new = replace(new, album_art=old.album_art)

        # Publish before emitting so consumers re-reading see this snapshot
        self._status = new
        for event in events:
            self._bus.publish(event)

        if old.album_art is not None and old.album_art != new.album_art:
            remove_album_art(old.album_art)

        # Deferred until the new snapshot and its events are out
        if reconnect:
            await self._query.reconnect_until_success()

    async def _fetch_album_art(self, new: PlayerStatus) -> Path | None:
        if new.song is None:
            return None
        try:
            return await update_album_art(self._query.issue_command, self._art_dir)
        except (AlbumArtError, MpdError) as e:
            logger.info("Failed to update album art: %s", e)
            return None

    async def _refresh_logged(self) -> None:
        """Refresh, logging failures instead of raising them.

        If the query connection broke, it is reconnected and the refresh is
        retried once.
        """
        if await self._try_refresh():
            return
        async with self._query_lock:
            await self._query.reconnect_until_success()
        await self._try_refresh()

    async def _try_refresh(self) -> bool:
        """Refresh once. Returns False if the query connection needs a reconnect."""
        try:
            await self.update_status()
        except MissingFieldError as e:
            logger.warning("Ignoring incomplete MPD status: %s", e)
        except MpdError as e:
            logger.error("Status refresh failed: %s", e)
        except (MpdConnectionError, MpdProtocolError) as e:
            logger.error("Status refresh failed: %s", e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _keepalive_loop(self) -> None:
        """Ping the query connection so MPD doesn't drop it."""
        while True:
            async with self._query_lock:
                try:
                    await self._query.issue_command("ping")
                except (MpdConnectionError, MpdProtocolError) as e:
                    logger.error("Ping failed: %s", e)
                    await self._query.reconnect_until_success()
                except MpdError as e:
                    logger.warning("Ping rejected by MPD: %s", e)
            await asyncio.sleep(self._keepalive_interval)

    async def _idle_loop(self) -> None:
        """Wait for MPD change notifications and react to them."""
        while True:
            try:
                await self._idle_once()
            except (MpdConnectionError, MpdProtocolError, MpdError) as e:
                logger.error("Idle failed, attempting reconnect: %s", e)
                await self._idle.reconnect_until_success()

    async def _idle_once(self) -> None:
        logger.debug("Entering idle...")
        response = await self._idle.issue_command(IDLE_COMMAND)
        logger.debug("Idle interrupted")

        refresh = False
        for name in response.values("changed"):
            subsystem = Subsystem.from_name(name)
            if subsystem is Subsystem.PLAYLIST:
                self._bus.publish(ChangeEvent.TRACKLIST)
            elif subsystem in _REFRESH_SUBSYSTEMS:
                refresh = True
            elif subsystem is None:
                logger.debug("Ignoring unknown subsystem change: %s", name)

        if refresh:
            await self._refresh_logged()
