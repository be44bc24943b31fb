"""
Pool service
============

Finds pools a passenger can share and runs the join handshake:

    passenger                     driver of the anchor's offer
    ---------                     ----------------------------
    find_available_pools  ──►
    request_join          ──►     list_pending_pool_requests
                                  respond_to_join(accept | reject)

Accepting a join request takes a seat the same way ``BookingService.accept``
does: under the offer's entity lock, through the conditional seat UPDATE.
When the last seat is raced for, exactly one accept wins and the others get
``CapacityExceededError`` with their request left pending.

Complexity
----------
* ``find_available_pools``: one bounding-box query, then O(k) haversine
  checks over the k anchors inside the box.
* ``find_route_matches``: O(n * v) over n candidate offers with v route
  vertices each.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.config import Settings, settings as default_settings
from tripcore.domain.entities import (
    JoinDecision,
    Location,
    PoolCandidate,
    Stop,
    generate_otp,
    utcnow,
)
from tripcore.domain.enums import (
    TERMINAL_STATUSES,
    BookingStatus,
    JoinAction,
    JoinStatus,
)
from tripcore.domain.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tripcore.domain.geo import bounding_box, haversine_km
from tripcore.domain.matching import (
    MatchPolicy,
    anchor_distances,
    anchor_match,
    route_match,
)
from tripcore.domain.pricing import FareEngine
from tripcore.infrastructure.locks import EntityLocks
from tripcore.infrastructure.models import BookingModel, VehicleOfferModel
from tripcore.infrastructure.repositories import (
    BookingRepository,
    UserRepository,
    VehicleOfferRepository,
)
from tripcore.infrastructure.routing import NullRoutingProvider, RoutingProvider
from tripcore.services.bookings import check_driver
from tripcore.services.feed import ChangeFeed, booking_key, offer_key
from tripcore.services.seats import SeatLedger
from tripcore.services.tracker import LocationTracker

logger = logging.getLogger(__name__)


class PoolService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        locks: EntityLocks,
        feed: ChangeFeed,
        tracker: LocationTracker,
        routing: RoutingProvider | None = None,
        fares: FareEngine | None = None,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._feed = feed
        self._tracker = tracker
        self._routing = routing or NullRoutingProvider()
        self._fares = fares or FareEngine()
        self._settings = settings
        self._clock = clock
        self.policy = MatchPolicy.from_settings(settings)

    # ── Discovery ─────────────────────────────────────────────────────

    async def find_available_pools(
        self, pickup: Location, dropoff: Location
    ) -> list[PoolCandidate]:
        """Accepted pool anchors near both ends of the requested trip."""
        bbox = bounding_box(
            pickup.latitude, pickup.longitude, self.policy.pickup_radius_km
        )
        candidates: list[PoolCandidate] = []

        async with self._session_factory() as session:
            anchors = await BookingRepository(session).list_pool_anchors(bbox)
            offers = VehicleOfferRepository(session)
            users = UserRepository(session)

            for anchor in anchors:
                if anchor.offer_id is None:
                    continue
                offer = await offers.get_by_id(anchor.offer_id)
                if offer is None:
                    continue
                pickup_km, dropoff_km = anchor_distances(
                    pickup.as_tuple, dropoff.as_tuple, anchor.pickup, anchor.dropoff
                )
                if not anchor_match(
                    pickup_km, dropoff_km, offer.occupied, offer.capacity, self.policy
                ):
                    continue
                driver = None
                if offer.driver_id is not None:
                    driver = await users.get_by_id(offer.driver_id)
                candidates.append(
                    PoolCandidate(
                        booking=anchor,
                        offer=offer,
                        driver=driver,
                        pickup_distance_km=pickup_km,
                        dropoff_distance_km=dropoff_km,
                        available_seats=offer.available_seats,
                    )
                )

        logger.debug(
            "Pool search: %d anchors in box, %d matches", len(anchors), len(candidates)
        )
        candidates.sort(key=lambda c: (c.pickup_distance_km, c.booking.id))
        return candidates

    async def find_route_matches(
        self, pickup: Location, dropoff: Location
    ) -> list[VehicleOfferModel]:
        """Pool offers whose route passes the pickup and ends near the drop-off."""
        async with self._session_factory() as session:
            offers = await VehicleOfferRepository(session).list_route_candidates()

        matches = [
            offer
            for offer in offers
            if route_match(
                pickup.as_tuple,
                dropoff.as_tuple,
                offer.final_destination,
                offer.route,
                self.policy,
            )
        ]
        logger.debug("Route search: %d candidates, %d matches", len(offers), len(matches))
        return matches

    # ── Join handshake ────────────────────────────────────────────────

    async def request_join(
        self,
        anchor_booking_id: int,
        passenger_id: int,
        pickup: Stop,
        dropoff: Stop,
        distance_km: Optional[float] = None,
    ) -> BookingModel:
        if distance_km is not None and distance_km < 0:
            raise ValidationError("Distance must not be negative")

        async with self._session_factory.begin() as session:
            bookings = BookingRepository(session)
            anchor = await bookings.get_by_id(anchor_booking_id)
            if anchor is None or not anchor.is_anchor:
                raise NotFoundError(f"Pool {anchor_booking_id} not found")
            if anchor.status in TERMINAL_STATUSES:
                raise InvalidStateError(
                    f"Pool {anchor_booking_id} is already {anchor.status.value}"
                )
            if await UserRepository(session).get_by_id(passenger_id) is None:
                raise ValidationError(f"Unknown passenger {passenger_id}")

            if distance_km is None:
                distance_km = haversine_km(
                    pickup.location.latitude,
                    pickup.location.longitude,
                    dropoff.location.latitude,
                    dropoff.location.longitude,
                )

            booking = await bookings.create(
                BookingModel(
                    passenger_id=passenger_id,
                    offer_id=anchor.offer_id,
                    pickup_address=pickup.address,
                    dropoff_address=dropoff.address,
                    pickup_lat=pickup.location.latitude,
                    pickup_lng=pickup.location.longitude,
                    dropoff_lat=dropoff.location.latitude,
                    dropoff_lng=dropoff.location.longitude,
                    status=BookingStatus.PENDING,
                    otp=generate_otp(),
                    fare=0,  # priced by the driver on acceptance
                    distance_km=distance_km,
                    is_pool=True,
                    pool_owner_id=anchor.id,
                    join_status=JoinStatus.PENDING,
                    created_at=self._clock(),
                )
            )

        logger.info(
            "Passenger %d asked to join pool %d (request %d)",
            passenger_id, anchor_booking_id, booking.id,
        )
        if booking.offer_id is not None:
            self._feed.publish(offer_key(booking.offer_id))
        return booking

    async def respond_to_join(
        self,
        join_booking_id: int,
        action: JoinAction,
        price_per_km: Optional[int] = None,
        driver_id: Optional[int] = None,
    ) -> JoinDecision:
        action = JoinAction(action)
        booking, offer = await self._snapshot_request(join_booking_id)
        check_driver(offer, driver_id)

        if action == JoinAction.REJECT:
            decision = await self._reject(join_booking_id)
        else:
            decision = await self._accept(booking, offer, price_per_km)

        self._feed.publish(booking_key(join_booking_id), offer_key(offer.id))
        return decision

    async def _reject(self, join_booking_id: int) -> JoinDecision:
        async with self._session_factory.begin() as session:
            bookings = BookingRepository(session)
            swapped = await bookings.compare_and_set(
                join_booking_id,
                expected_status=BookingStatus.PENDING,
                expected_join_status=JoinStatus.PENDING,
                status=BookingStatus.CANCELLED,
                join_status=JoinStatus.REJECTED,
                updated_at=self._clock(),
            )
            if not swapped:
                raise InvalidStateError(
                    f"Join request {join_booking_id} is no longer pending"
                )
            booking = await bookings.get_by_id(join_booking_id)

        await self._tracker.evict(join_booking_id)
        logger.info("Join request %d rejected", join_booking_id)
        return JoinDecision(booking=booking, fare=None, accepted=False)

    async def _accept(
        self,
        booking: BookingModel,
        offer: VehicleOfferModel,
        price_per_km: Optional[int],
    ) -> JoinDecision:
        route = None
        if offer.final_destination is None:
            route = await self._routing.route(
                Location(booking.pickup_lat, booking.pickup_lng),
                Location(booking.dropoff_lat, booking.dropoff_lng),
            )

        async with self._locks.hold(offer_key(offer.id)):
            async with self._session_factory.begin() as session:
                bookings = BookingRepository(session)
                booking = await bookings.get_by_id(booking.id)
                anchor = await bookings.get_by_id(booking.pool_owner_id)
                if anchor is None or anchor.status in TERMINAL_STATUSES:
                    raise InvalidStateError(
                        f"Pool {booking.pool_owner_id} is no longer running"
                    )
                offer = await VehicleOfferRepository(session).get_by_id(offer.id)
                if not offer.is_available:
                    raise InvalidStateError(f"Vehicle offer {offer.id} is offline")

                price = offer.price_per_km if price_per_km is None else price_per_km
                distance = booking.distance_km
                if distance is None:
                    distance = haversine_km(
                        booking.pickup_lat, booking.pickup_lng,
                        booking.dropoff_lat, booking.dropoff_lng,
                    )
                fare = self._fares.fare(distance, price)

                swapped = await bookings.compare_and_set(
                    booking.id,
                    expected_status=BookingStatus.PENDING,
                    expected_join_status=JoinStatus.PENDING,
                    status=BookingStatus.ACCEPTED,
                    join_status=JoinStatus.ACCEPTED,
                    fare=fare,
                    updated_at=self._clock(),
                )
                if not swapped:
                    raise InvalidStateError(
                        f"Join request {booking.id} is no longer pending"
                    )
                await SeatLedger(
                    session, self._settings.destination_cell_resolution
                ).occupy(offer, booking, route)
                await bookings.reload(booking)

        logger.info(
            "Join request %d accepted at %d/km, fare %d (offer %d now %d/%d)",
            booking.id, price, fare, offer.id, offer.occupied, offer.capacity,
        )
        return JoinDecision(booking=booking, fare=fare, accepted=True)

    async def _snapshot_request(
        self, join_booking_id: int
    ) -> tuple[BookingModel, VehicleOfferModel]:
        async with self._session_factory() as session:
            booking = await BookingRepository(session).get_by_id(join_booking_id)
            if booking is None or not booking.is_join_request:
                raise NotFoundError(f"Join request {join_booking_id} not found")
            if booking.join_status != JoinStatus.PENDING:
                raise InvalidStateError(
                    f"Join request {join_booking_id} is already "
                    f"{booking.join_status.value}"
                )
            offer = None
            if booking.offer_id is not None:
                offer = await VehicleOfferRepository(session).get_by_id(booking.offer_id)
        if offer is None:
            raise InvalidStateError(f"Join request {join_booking_id} has no vehicle")
        return booking, offer

    # ── Listings ──────────────────────────────────────────────────────

    async def list_pool_passengers(self, anchor_id: int) -> list[BookingModel]:
        """Accepted co-riders of a pool (the anchor itself is not listed)."""
        async with self._session_factory() as session:
            return await BookingRepository(session).list_pool_passengers(anchor_id)

    async def list_pending_pool_requests(self, offer_id: int) -> list[BookingModel]:
        async with self._session_factory() as session:
            return await BookingRepository(session).list_pending_join_requests(offer_id)
