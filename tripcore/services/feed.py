"""
In-process change feed.

Services ``publish`` a key (``booking:<id>`` / ``offer:<id>``) after every
committed mutation; long-poll endpoints ``subscribe`` to a key and wake up
as soon as it changes.  Plain polling remains valid: the feed only shortens
the time until an observer sees a transition.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


def booking_key(booking_id: int) -> str:
    return f"booking:{booking_id}"


def offer_key(offer_id: int) -> str:
    return f"offer:{offer_id}"


class Subscription:
    def __init__(self, event: asyncio.Event):
        self._event = event

    async def wait(self, timeout: float) -> bool:
        """``True`` if a change was published before *timeout* seconds."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ChangeFeed:
    def __init__(self) -> None:
        self._waiters: dict[str, set[asyncio.Event]] = defaultdict(set)

    def publish(self, *keys: str) -> None:
        for key in keys:
            for event in self._waiters.get(key, ()):
                event.set()

    @asynccontextmanager
    async def subscribe(self, key: str) -> AsyncIterator[Subscription]:
        event = asyncio.Event()
        self._waiters[key].add(event)
        try:
            yield Subscription(event)
        finally:
            waiters = self._waiters.get(key)
            if waiters is not None:
                waiters.discard(event)
                if not waiters:
                    del self._waiters[key]

    def subscriber_count(self, key: str) -> int:
        return len(self._waiters.get(key, ()))
