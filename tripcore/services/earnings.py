"""Read-only earnings and trip history views."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.domain.entities import DriverStats
from tripcore.infrastructure.models import BookingModel
from tripcore.infrastructure.repositories import BookingRepository


class EarningsService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def driver_stats(self, driver_id: int) -> DriverStats:
        """Fare total and number of completed trips on the driver's offers."""
        async with self._session_factory() as session:
            total, count = await BookingRepository(session).completed_totals_for_driver(
                driver_id
            )
        return DriverStats(earnings=total, total_trips=count)

    async def driver_earnings(self, driver_id: int) -> int:
        return (await self.driver_stats(driver_id)).earnings

    async def driver_trip_count(self, driver_id: int) -> int:
        return (await self.driver_stats(driver_id)).total_trips

    async def user_history(self, user_id: int) -> list[BookingModel]:
        async with self._session_factory() as session:
            return await BookingRepository(session).history_for_passenger(user_id)

    async def driver_history(self, driver_id: int) -> list[BookingModel]:
        async with self._session_factory() as session:
            return await BookingRepository(session).history_for_driver(driver_id)
