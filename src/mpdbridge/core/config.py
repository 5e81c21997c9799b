"""Configuration manager using QSettings for persistent storage."""

import logging
from pathlib import Path

from PySide6.QtCore import QSettings

logger = logging.getLogger(__name__)

# MPD
_KEY_MPD_HOST = "mpd/host"
_KEY_MPD_PORT = "mpd/port"
_KEY_MPD_PASSWORD = "mpd/password"

# Timing
_KEY_KEEPALIVE_INTERVAL = "timing/keepalive_interval"
_KEY_RETRY_INTERVAL = "timing/retry_interval"

# Album art
_KEY_ART_DIR = "album_art/directory"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6600
DEFAULT_KEEPALIVE_INTERVAL = 55
DEFAULT_RETRY_INTERVAL = 5


class ConfigManager:
    """Wrapper around QSettings for type-safe config access.

    QSettings stores config in platform-specific locations:
    - Windows: HKEY_CURRENT_USER\\Software\\mpdbridge\\mpdbridge
    - macOS: ~/Library/Preferences/com.mpdbridge.mpdbridge.plist
    - Linux: ~/.config/mpdbridge/mpdbridge.conf

    Example:
        config = ConfigManager()
        cache = StateCache(config.get_mpd_host(), config.get_mpd_port())
    """

    def __init__(self, organization: str = "mpdbridge", application: str = "mpdbridge") -> None:
        """Initialize the config manager.

        Args:
            organization: Organization name for QSettings.
            application: Application name for QSettings.
        """
        self._settings = QSettings(organization, application)

    @property
    def settings(self) -> QSettings:
        """Return the underlying QSettings instance."""
        return self._settings

    def _get_int(self, key: str, default: int, low: int, high: int) -> int:
        value = self._settings.value(key, default)
        try:
            number = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s: %r, using %d", key, value, default)
            return default
        return max(low, min(high, number))

    # -- MPD settings ----------------------------------------------------------

    def get_mpd_host(self) -> str:
        """Return the MPD host.

        Returns:
            Host string (default "localhost").
        """
        value = self._settings.value(_KEY_MPD_HOST, DEFAULT_HOST, str)
        return str(value) if value else DEFAULT_HOST

    def set_mpd_host(self, host: str) -> None:
        """Set the MPD host.

        Args:
            host: Hostname or IP.
        """
        self._settings.setValue(_KEY_MPD_HOST, host)

    def get_mpd_port(self) -> int:
        """Return the MPD port.

        Returns:
            Port number (default 6600).
        """
        return self._get_int(_KEY_MPD_PORT, DEFAULT_PORT, 1, 65535)

    def set_mpd_port(self, port: int) -> None:
        """Set the MPD port.

        Args:
            port: Port number (1-65535).
        """
        self._settings.setValue(_KEY_MPD_PORT, max(1, min(65535, port)))

    def get_mpd_password(self) -> str:
        """Return the MPD password, or empty string for none."""
        value = self._settings.value(_KEY_MPD_PASSWORD, "", str)
        return str(value) if value else ""

    def set_mpd_password(self, password: str) -> None:
        """Set the MPD password."""
        self._settings.setValue(_KEY_MPD_PASSWORD, password)

    # -- Timing settings -------------------------------------------------------

    def get_keepalive_interval(self) -> int:
        """Return the keepalive ping interval in seconds.

        Returns:
            Interval in seconds (default 55).
        """
        return self._get_int(_KEY_KEEPALIVE_INTERVAL, DEFAULT_KEEPALIVE_INTERVAL, 5, 300)

    def set_keepalive_interval(self, seconds: int) -> None:
        """Set the keepalive ping interval.

        Args:
            seconds: Interval in seconds (5-300).
        """
        self._settings.setValue(_KEY_KEEPALIVE_INTERVAL, max(5, min(300, seconds)))

    def get_retry_interval(self) -> int:
        """Return the reconnect retry interval in seconds.

        Returns:
            Interval in seconds (default 5).
        """
        return self._get_int(_KEY_RETRY_INTERVAL, DEFAULT_RETRY_INTERVAL, 1, 60)

    def set_retry_interval(self, seconds: int) -> None:
        """Set the reconnect retry interval.

        Args:
            seconds: Interval in seconds (1-60).
        """
        self._settings.setValue(_KEY_RETRY_INTERVAL, max(1, min(60, seconds)))

    # -- Album art settings ----------------------------------------------------

    def get_art_dir(self) -> Path | None:
        """Return the configured album art directory.

        Returns:
            Path, or None to use the platform runtime directory.
        """
        value = self._settings.value(_KEY_ART_DIR, "", str)
        return Path(str(value)) if value else None

    def set_art_dir(self, path: Path | None) -> None:
        """Set the album art directory.

        Args:
            path: Directory, or None for the platform default.
        """
        self._settings.setValue(_KEY_ART_DIR, str(path) if path else "")

    # -- General settings ------------------------------------------------------

    def clear(self) -> None:
        """Clear all settings (useful for testing or reset)."""
        self._settings.clear()

    def sync(self) -> None:
        """Force settings to be written to disk."""
        self._settings.sync()
