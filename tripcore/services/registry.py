"""Vehicle offers: one per driver shift, created on go-online."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.config import Settings, settings as default_settings
from tripcore.domain.entities import ActivePool, Position, VehicleDescriptor
from tripcore.domain.enums import (
    FareType,
    OfferStatus,
    UserRole,
)
from tripcore.domain.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tripcore.infrastructure.locks import EntityLocks
from tripcore.infrastructure.models import VehicleOfferModel
from tripcore.infrastructure.repositories import (
    BookingRepository,
    UserRepository,
    VehicleOfferRepository,
)
from tripcore.services.feed import ChangeFeed, offer_key

logger = logging.getLogger(__name__)


class OfferRegistry:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        locks: EntityLocks,
        feed: ChangeFeed,
        settings: Settings = default_settings,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._feed = feed
        self._settings = settings

    async def go_online(
        self,
        driver_id: int,
        vehicle: VehicleDescriptor,
        position: Position,
        fare_type: FareType = FareType.POOL,
        price_per_km: Optional[int] = None,
    ) -> VehicleOfferModel:
        """Start a shift: a fresh, empty offer; earlier idle offers are retired."""
        fare_type = FareType(fare_type)
        if price_per_km is None:
            price_per_km = self._settings.default_price_per_km.get(fare_type.value)
            if price_per_km is None:
                raise ValidationError(f"No default price for fare type {fare_type.value}")
        if price_per_km < 0:
            raise ValidationError("Price per km must not be negative")

        async with self._session_factory.begin() as session:
            driver = await UserRepository(session).get_by_id(driver_id)
            if driver is None:
                raise ValidationError(f"Unknown driver {driver_id}")
            if driver.role != UserRole.DRIVER:
                raise PermissionDeniedError(f"User {driver_id} is not a driver")

            offers = VehicleOfferRepository(session)
            retired = await offers.retire_idle_for_driver(driver_id)
            offer = await offers.create(
                VehicleOfferModel(
                    driver_id=driver_id,
                    car_model=vehicle.car_model,
                    car_number=vehicle.car_number,
                    latitude=position.latitude,
                    longitude=position.longitude,
                    heading=position.heading,
                    is_available=True,
                    fare_type=fare_type,
                    price_per_km=price_per_km,
                    capacity=vehicle.capacity,
                    occupied=0,
                    status=OfferStatus.EMPTY,
                )
            )

        logger.info(
            "Driver %d online with offer %d (%s, %d/km, %d seats, %d retired)",
            driver_id, offer.id, fare_type.value, price_per_km, vehicle.capacity, retired,
        )
        self._feed.publish(offer_key(offer.id))
        return offer

    async def go_offline(
        self, offer_id: int, driver_id: Optional[int] = None
    ) -> VehicleOfferModel:
        """Hide the offer from matching; riders already aboard are unaffected."""
        async with self._locks.hold(offer_key(offer_id)):
            async with self._session_factory.begin() as session:
                offers = VehicleOfferRepository(session)
                offer = await offers.get_by_id(offer_id)
                if offer is None:
                    raise NotFoundError(f"Vehicle offer {offer_id} not found")
                if driver_id is not None and offer.driver_id not in (None, driver_id):
                    raise PermissionDeniedError("Offer belongs to another driver")

                offer.is_available = False
                if offer.occupied == 0:
                    offer.status = OfferStatus.COMPLETED
                await session.flush()

        logger.info("Offer %d offline (occupied %d)", offer_id, offer.occupied)
        self._feed.publish(offer_key(offer_id))
        return offer

    async def list_offers(self, available_only: bool = False) -> list[VehicleOfferModel]:
        async with self._session_factory() as session:
            return await VehicleOfferRepository(session).list_all(available_only)

    async def get_offer(self, offer_id: int) -> VehicleOfferModel:
        async with self._session_factory() as session:
            offer = await VehicleOfferRepository(session).get_by_id(offer_id)
        if offer is None:
            raise NotFoundError(f"Vehicle offer {offer_id} not found")
        return offer

    async def active_pools(self) -> list[ActivePool]:
        """Pool offers with riders aboard, grouped with their seated bookings."""
        async with self._session_factory() as session:
            offers = await VehicleOfferRepository(session).list_active_pools()
            bookings = BookingRepository(session)
            pools = []
            for offer in offers:
                riders = await bookings.list_seated(offer.id)
                pools.append(ActivePool(offer=offer, riders=riders))
        return pools
