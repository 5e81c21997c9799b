"""Change notifications broadcast by the state cache.

Every subscriber gets its own bounded queue. Publishing never blocks: when
a subscriber falls behind, its oldest queued event is dropped to make room.
Events that do arrive are always in emission order.

Example:
    bus = ChangeEventBus()
    sub = bus.subscribe()
    bus.publish(ChangeEvent.VOLUME)
    event = await sub.recv()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50


class ChangeEvent(Enum):
    """Kinds of player state change."""

    PLAYBACK = "playback"
    LOOP = "loop"
    SHUFFLE = "shuffle"
    VOLUME = "volume"
    SONG = "song"
    NEXT_SONG = "next_song"
    TRACKLIST = "tracklist"


class Subscription:
    """One consumer's view of the event stream.

    Supports `await sub.recv()` and `async for event in sub`.
    """

    def __init__(self, bus: ChangeEventBus, capacity: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=capacity)
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Return the number of queued events."""
        return self._queue.qsize()

    def _offer(self, event: ChangeEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def recv(self) -> ChangeEvent:
        """Wait for the next event."""
        return await self._queue.get()

    def get_nowait(self) -> ChangeEvent | None:
        """Return the next event if one is queued, else None."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        """Stop receiving events."""
        self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            yield await self.recv()


class ChangeEventBus:
    """Fan-out broadcast of ChangeEvents to independent subscribers."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Initialize the bus.

        Args:
            capacity: Queue size for each subscriber.
        """
        self._capacity = capacity
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        """Return the number of active subscribers."""
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Create a new subscription receiving all future events."""
        subscription = Subscription(self, self._capacity)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscription. Unknown subscriptions are ignored."""
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every subscriber without blocking."""
        logger.debug("Publishing %s to %d subscriber(s)", event.name, len(self._subscribers))
        for subscription in self._subscribers:
            subscription._offer(event)
