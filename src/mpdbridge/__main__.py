"""Main entry point: follow an MPD server and log every state change."""

import argparse
import asyncio
import logging
import sys

from mpdbridge.api.mpd.types import PlayerStatus, playback_name
from mpdbridge.core.config import ConfigManager
from mpdbridge.core.events import ChangeEvent
from mpdbridge.core.state import StateCache

logger = logging.getLogger(__name__)


def parse_args(argv: list[str], config: ConfigManager) -> argparse.Namespace:
    """Parse command line arguments, defaulting to stored settings."""
    parser = argparse.ArgumentParser(
        prog="mpdbridge",
        description="mpdbridge - MPD state cache and change notifier",
    )
    parser.add_argument(
        "--host", default=config.get_mpd_host(), help="MPD hostname or IP",
    )
    parser.add_argument(
        "--port", type=int, default=config.get_mpd_port(), help="MPD port (default: 6600)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    return parser.parse_args(argv)


def describe(event: ChangeEvent, status: PlayerStatus) -> str:
    """Return a one-line log message for an event."""
    if event is ChangeEvent.PLAYBACK:
        return f"Playback: {playback_name(status.playback)}"
    if event is ChangeEvent.LOOP:
        return f"Loop: {status.loop.value}"
    if event is ChangeEvent.SHUFFLE:
        return f"Shuffle: {'on' if status.random else 'off'}"
    if event is ChangeEvent.VOLUME:
        return f"Volume: {status.volume if status.can_set_volume else 'n/a'}"
    if event is ChangeEvent.SONG:
        art = status.album_art or "no art"
        return f"Song: {status.artist or 'Unknown Artist'} - {status.title or status.uri} ({art})"
    if event is ChangeEvent.NEXT_SONG:
        return f"Next song: {status.next_song}"
    return f"Playlist changed ({status.playlist_length} songs)"


async def run(host: str, port: int, config: ConfigManager) -> None:
    """Start the cache and log events until cancelled."""
    cache = StateCache(
        host,
        port,
        config.get_mpd_password(),
        keepalive_interval=config.get_keepalive_interval(),
        retry_interval=config.get_retry_interval(),
        art_dir=config.get_art_dir(),
    )
    events = cache.subscribe()
    async with cache:
        logger.info("Service started.")
        async for event in events:
            logger.info(describe(event, cache.status))


def main() -> int:
    """Run mpdbridge.

    Returns:
        Exit code (0 for success).
    """
    config = ConfigManager()
    args = parse_args(sys.argv[1:], config)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(args.host, args.port, config))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
