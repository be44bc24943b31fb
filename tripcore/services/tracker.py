"""
Live driver location, one latest sample per active booking.

Last write wins; there is no history.  Samples are evicted when their
booking reaches a terminal state, either directly by the booking service
or by the maintenance worker's sweep.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.domain.entities import DriverLocationSample, utcnow
from tripcore.domain.errors import NotFoundError
from tripcore.infrastructure.location_store import LocationStore, MemoryLocationStore
from tripcore.infrastructure.repositories import BookingRepository

logger = logging.getLogger(__name__)


class LocationTracker:
    def __init__(
        self,
        store: LocationStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or MemoryLocationStore()
        self._clock = clock

    async def report(
        self,
        booking_id: int,
        lat: float,
        lng: float,
        heading: Optional[float] = None,
    ) -> DriverLocationSample:
        sample = DriverLocationSample(
            booking_id=booking_id,
            lat=lat,
            lng=lng,
            heading=heading if heading is not None else 0.0,
            updated_at=self._clock(),
        )
        await self.store.put(sample)
        return sample

    async def read(self, booking_id: int) -> DriverLocationSample:
        sample = await self.store.get(booking_id)
        if sample is None:
            raise NotFoundError(f"No driver location for booking {booking_id}")
        return sample

    async def evict(self, booking_id: int) -> None:
        await self.store.delete(booking_id)

    async def evict_finished(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Drop samples whose booking is terminal or gone; return the count."""
        tracked = await self.store.booking_ids()
        if not tracked:
            return 0
        async with session_factory() as session:
            finished = await BookingRepository(session).terminal_ids(tracked)
        for booking_id in finished:
            await self.store.delete(booking_id)
        if finished:
            logger.info("Evicted %d stale driver locations", len(finished))
        return len(finished)
