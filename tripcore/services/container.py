"""Builds the service graph shared by the API, the worker and the seed script."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.config import Settings, settings as default_settings
from tripcore.domain.entities import utcnow
from tripcore.domain.pricing import FareEngine
from tripcore.infrastructure.location_store import (
    LocationStore,
    MemoryLocationStore,
    RedisLocationStore,
)
from tripcore.infrastructure.locks import EntityLocks
from tripcore.infrastructure.redis_client import get_redis
from tripcore.infrastructure.routing import (
    HttpRoutingProvider,
    NullRoutingProvider,
    RoutingProvider,
)
from tripcore.services.bookings import BookingService
from tripcore.services.earnings import EarningsService
from tripcore.services.feed import ChangeFeed
from tripcore.services.pools import PoolService
from tripcore.services.registry import OfferRegistry
from tripcore.services.tracker import LocationTracker


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    settings: Settings
    feed: ChangeFeed
    locks: EntityLocks
    routing: RoutingProvider
    bookings: BookingService
    pools: PoolService
    offers: OfferRegistry
    tracker: LocationTracker
    earnings: EarningsService

    async def aclose(self) -> None:
        close = getattr(self.routing, "aclose", None)
        if close is not None:
            await close()


async def open_location_store(settings: Settings) -> LocationStore:
    if settings.location_store == "redis":
        return RedisLocationStore(await get_redis(), settings.location_ttl_seconds)
    return MemoryLocationStore()


def build_routing(settings: Settings) -> RoutingProvider:
    if not settings.routing_enabled:
        return NullRoutingProvider()
    return HttpRoutingProvider(
        settings.osrm_url, settings.nominatim_url, settings.routing_timeout_seconds
    )


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings = default_settings,
    location_store: Optional[LocationStore] = None,
    routing: Optional[RoutingProvider] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    clock = clock or utcnow
    feed = ChangeFeed()
    locks = EntityLocks()
    fares = FareEngine()
    routing = routing or build_routing(settings)
    tracker = LocationTracker(location_store or MemoryLocationStore(), clock)

    shared = dict(
        locks=locks,
        feed=feed,
        tracker=tracker,
        routing=routing,
        fares=fares,
        settings=settings,
        clock=clock,
    )
    return Services(
        session_factory=session_factory,
        settings=settings,
        feed=feed,
        locks=locks,
        routing=routing,
        bookings=BookingService(session_factory, **shared),
        pools=PoolService(session_factory, **shared),
        offers=OfferRegistry(session_factory, locks=locks, feed=feed, settings=settings),
        tracker=tracker,
        earnings=EarningsService(session_factory),
    )
