"""
Bounded single-consumer channel for PriceUpdateEvents.

The scheduler publishes without ever blocking; the reconciler drains the
channel at the start of its next cycle and only cares about the newest event.
On overflow the oldest pending event is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from offerbot.oracle.models import PriceUpdateEvent

log = logging.getLogger("offerbot")

DEFAULT_CAPACITY = 8


class PriceUpdateChannel:
    def __init__(self, capacity: int = DEFAULT_CAPACITY, name: str = "reconciler") -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.name = name
        self._queue: asyncio.Queue[PriceUpdateEvent] = asyncio.Queue(maxsize=capacity)
        self._published = 0
        self._dropped = 0

    def publish(self, event: PriceUpdateEvent) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        if self._queue.full():
            self._queue.get_nowait()
            self._dropped += 1
            log.debug("price channel %s full, dropped oldest event", self.name)
        self._queue.put_nowait(event)
        self._published += 1

    def drain(self) -> List[PriceUpdateEvent]:
        """Everything pending, oldest first."""
        events: List[PriceUpdateEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def latest(self) -> Optional[PriceUpdateEvent]:
        events = self.drain()
        return events[-1] if events else None

    def pending(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "pending": self._queue.qsize(),
            "capacity": self._queue.maxsize,
            "published": self._published,
            "dropped": self._dropped,
        }
