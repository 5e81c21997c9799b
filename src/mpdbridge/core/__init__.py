"""Core state layer.

This module contains the state cache that turns MPD's protocol into a
snapshot plus a stream of change events.

Classes:
    StateCache: Cached player status, background loops, command passthrough.
    ChangeEventBus: Fan-out of change events to independent subscribers.
    ConfigManager: QSettings wrapper for configuration.
"""

from mpdbridge.core.config import ConfigManager
from mpdbridge.core.events import ChangeEvent, ChangeEventBus, Subscription
from mpdbridge.core.state import StateCache

__all__ = ["ChangeEvent", "ChangeEventBus", "ConfigManager", "StateCache", "Subscription"]
