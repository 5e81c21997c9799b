"""mpdbridge: MPD player state cache with change notifications."""

__version__ = "0.1.0"
