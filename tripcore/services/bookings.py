"""
Booking lifecycle service
=========================

Drives a booking through

    pending -> accepted -> arrived -> in_progress -> completed
       |-> cancelled   (passenger abandons before a driver commits)
       |-> rejected    (the offer's driver turns the request down)

Concurrency safety
------------------
* Every transition is a **compare-and-swap** on the stored status, so of
  two racing ``accept`` calls the first writer wins and the second gets
  ``InvalidStateError``.
* Units of work that change an offer's occupancy or status hold the
  offer's in-process **entity lock**; the conditional seat UPDATE keeps
  ``0 <= occupied <= capacity`` across processes.

Each public method runs in its own transaction and publishes the touched
keys on the change feed after commit.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.config import Settings, settings as default_settings
from tripcore.domain.entities import (
    BookingDetail,
    Identity,
    Location,
    RouteResult,
    Stop,
    ensure_transition,
    generate_otp,
    utcnow,
)
from tripcore.domain.enums import (
    BookingStatus,
    FareType,
    JoinStatus,
    UserRole,
)
from tripcore.domain.errors import (
    InvalidStateError,
    NotFoundError,
    OtpMismatchError,
    PermissionDeniedError,
    ValidationError,
)
from tripcore.domain.geo import haversine_km
from tripcore.domain.pricing import FareEngine
from tripcore.infrastructure.locks import EntityLocks
from tripcore.infrastructure.models import BookingModel, VehicleOfferModel
from tripcore.infrastructure.repositories import (
    BookingRepository,
    UserRepository,
    VehicleOfferRepository,
)
from tripcore.infrastructure.routing import NullRoutingProvider, RoutingProvider
from tripcore.services.feed import ChangeFeed, booking_key, offer_key
from tripcore.services.seats import SeatLedger
from tripcore.services.tracker import LocationTracker

logger = logging.getLogger(__name__)


def check_driver(
    offer: Optional[VehicleOfferModel], driver_id: Optional[int], required: bool = False
) -> None:
    """Only the offer's driver may act on its bookings.

    Offers without a driver (seeded fleet) may be claimed by any driver.
    """
    if driver_id is None:
        if required:
            raise PermissionDeniedError("Only a driver can perform this action")
        return
    if offer is not None and offer.driver_id is not None and offer.driver_id != driver_id:
        raise PermissionDeniedError("Booking belongs to another driver's vehicle")


class BookingService:
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

    # ── Creation ──────────────────────────────────────────────────────

    async def create(
        self,
        passenger_id: int,
        offer_id: int,
        pickup: Optional[Stop],
        dropoff: Optional[Stop],
        fare_estimate: Optional[int] = None,
        is_pool: bool = False,
        distance_km: Optional[float] = None,
    ) -> BookingModel:
        if pickup is None or dropoff is None:
            raise ValidationError("Pickup and drop-off coordinates are required")
        if fare_estimate is not None and fare_estimate < 0:
            raise ValidationError("Fare estimate must not be negative")
        if distance_km is not None and distance_km < 0:
            raise ValidationError("Distance must not be negative")

        async with self._session_factory.begin() as session:
            if await UserRepository(session).get_by_id(passenger_id) is None:
                raise ValidationError(f"Unknown passenger {passenger_id}")
            offer = await VehicleOfferRepository(session).get_by_id(offer_id)
            if offer is None:
                raise ValidationError(f"Vehicle offer {offer_id} does not exist")
            if not offer.is_available:
                raise ValidationError(f"Vehicle offer {offer_id} is offline")

            if distance_km is None:
                distance_km = haversine_km(
                    pickup.location.latitude,
                    pickup.location.longitude,
                    dropoff.location.latitude,
                    dropoff.location.longitude,
                )

            booking = await BookingRepository(session).create(
                BookingModel(
                    passenger_id=passenger_id,
                    offer_id=offer_id,
                    pickup_address=pickup.address,
                    dropoff_address=dropoff.address,
                    pickup_lat=pickup.location.latitude,
                    pickup_lng=pickup.location.longitude,
                    dropoff_lat=dropoff.location.latitude,
                    dropoff_lng=dropoff.location.longitude,
                    status=BookingStatus.PENDING,
                    otp=generate_otp(),
                    fare=fare_estimate,
                    distance_km=distance_km,
                    is_pool=is_pool,
                    join_status=JoinStatus.OWNER if is_pool else None,
                    created_at=self._clock(),
                )
            )

        logger.info(
            "Booking %d created for passenger %d on offer %d (pool=%s)",
            booking.id, passenger_id, offer_id, is_pool,
        )
        self._feed.publish(offer_key(offer_id))
        return booking

    # ── Driver-side transitions ───────────────────────────────────────

    async def accept(self, booking_id: int, driver_id: Optional[int]) -> BookingModel:
        """pending -> accepted; takes one seat on the booking's offer."""
        booking, offer = await self._snapshot(booking_id)
        check_driver(offer, driver_id, required=True)
        route = await self._route_for_first_seat(booking, offer)

        async with self._locks.hold(offer_key(offer.id)):
            async with self._session_factory.begin() as session:
                bookings = BookingRepository(session)
                booking = await self._require(bookings, booking_id)
                if booking.is_join_request:
                    raise InvalidStateError(
                        "Pool join requests are answered by the pool's driver"
                    )
                ensure_transition(booking.status, BookingStatus.ACCEPTED)
                offer = await VehicleOfferRepository(session).get_by_id(offer.id)
                if not offer.is_available:
                    raise InvalidStateError(f"Vehicle offer {offer.id} is offline")

                swapped = await bookings.compare_and_set(
                    booking_id,
                    expected_status=BookingStatus.PENDING,
                    status=BookingStatus.ACCEPTED,
                    updated_at=self._clock(),
                )
                if not swapped:
                    raise InvalidStateError(
                        f"Booking {booking_id} is no longer pending"
                    )
                await self._ledger(session).occupy(offer, booking, route)
                await bookings.reload(booking)

        logger.info(
            "Booking %d accepted by driver %s (offer %d now %d/%d)",
            booking_id, driver_id, offer.id, offer.occupied, offer.capacity,
        )
        self._feed.publish(booking_key(booking_id), offer_key(offer.id))
        return booking

    async def decline(self, booking_id: int, driver_id: Optional[int]) -> BookingModel:
        """pending -> rejected for a regular (non join-request) booking."""
        booking = await self._transition(
            booking_id,
            BookingStatus.REJECTED,
            driver_id=driver_id,
            driver_required=True,
            guard=self._not_join_request,
        )
        await self._tracker.evict(booking_id)
        return booking

    async def mark_arrived(
        self, booking_id: int, driver_id: Optional[int] = None
    ) -> BookingModel:
        return await self._transition(
            booking_id, BookingStatus.ARRIVED, driver_id=driver_id
        )

    async def start_trip(
        self, booking_id: int, otp: Optional[str], driver_id: Optional[int] = None
    ) -> BookingModel:
        """arrived -> in_progress, only with the passenger's OTP."""
        if otp is None or not str(otp).strip():
            raise ValidationError("OTP is required to start the trip")
        supplied = str(otp).strip()

        booking, offer = await self._snapshot(booking_id)
        check_driver(offer, driver_id)

        async with self._locks.hold(offer_key(offer.id)):
            async with self._session_factory.begin() as session:
                bookings = BookingRepository(session)
                booking = await self._require(bookings, booking_id)
                ensure_transition(booking.status, BookingStatus.IN_PROGRESS)
                if not secrets.compare_digest(supplied.encode(), booking.otp.encode()):
                    logger.info("OTP mismatch on booking %d", booking_id)
                    raise OtpMismatchError("Invalid OTP")

                swapped = await bookings.compare_and_set(
                    booking_id,
                    expected_status=BookingStatus.ARRIVED,
                    status=BookingStatus.IN_PROGRESS,
                    updated_at=self._clock(),
                )
                if not swapped:
                    raise InvalidStateError(f"Booking {booking_id} is no longer arrived")
                offer = await VehicleOfferRepository(session).get_by_id(offer.id)
                await self._ledger(session).depart(offer)
                await bookings.reload(booking)

        logger.info("Trip started for booking %d", booking_id)
        self._feed.publish(booking_key(booking_id), offer_key(offer.id))
        return booking

    async def complete(
        self, booking_id: int, driver_id: Optional[int] = None
    ) -> BookingModel:
        """in_progress -> completed; finalises the fare and frees the seat."""
        booking, offer = await self._snapshot(booking_id)
        check_driver(offer, driver_id)

        async with self._locks.hold(offer_key(offer.id)):
            async with self._session_factory.begin() as session:
                bookings = BookingRepository(session)
                booking = await self._require(bookings, booking_id)
                ensure_transition(booking.status, BookingStatus.COMPLETED)
                offer = await VehicleOfferRepository(session).get_by_id(offer.id)

                fare = booking.fare
                if fare is None:
                    fare = self._fares.fare(self._distance_of(booking), offer.price_per_km)

                swapped = await bookings.compare_and_set(
                    booking_id,
                    expected_status=BookingStatus.IN_PROGRESS,
                    status=BookingStatus.COMPLETED,
                    fare=fare,
                    updated_at=self._clock(),
                )
                if not swapped:
                    raise InvalidStateError(
                        f"Booking {booking_id} is no longer in progress"
                    )
                await self._ledger(session).release(offer)
                await bookings.reload(booking)

        await self._tracker.evict(booking_id)
        logger.info("Booking %d completed, fare %d", booking_id, booking.fare)
        self._feed.publish(booking_key(booking_id), offer_key(offer.id))
        return booking

    # ── Passenger-side transitions ────────────────────────────────────

    async def cancel(
        self, booking_id: int, passenger_id: Optional[int] = None
    ) -> BookingModel:
        """pending -> cancelled.  Once a driver committed there is no way back."""

        def owner_only(booking: BookingModel) -> None:
            if passenger_id is not None and booking.passenger_id != passenger_id:
                raise PermissionDeniedError("Booking belongs to another passenger")

        extra = {}
        booking, _ = await self._snapshot(booking_id)
        if booking.is_join_request:
            extra["join_status"] = JoinStatus.REJECTED
        booking = await self._transition(
            booking_id, BookingStatus.CANCELLED, guard=owner_only, **extra
        )
        await self._tracker.evict(booking_id)
        return booking

    # ── Dispatcher used by the status endpoint ────────────────────────

    async def update_status(
        self,
        booking_id: int,
        target: BookingStatus,
        otp: Optional[str] = None,
        actor: Optional[Identity] = None,
    ) -> BookingModel:
        target = BookingStatus(target)
        if actor is None:
            raise PermissionDeniedError("Missing caller identity")
        driver_id = actor.user_id if actor.role == UserRole.DRIVER else None

        if target in (
            BookingStatus.ACCEPTED,
            BookingStatus.REJECTED,
            BookingStatus.ARRIVED,
            BookingStatus.IN_PROGRESS,
            BookingStatus.COMPLETED,
        ) and driver_id is None:
            raise PermissionDeniedError("Only the driver can move a trip forward")

        if target == BookingStatus.ACCEPTED:
            # The OTP was fixed at creation; anything sent along is ignored
            return await self.accept(booking_id, driver_id)
        if target == BookingStatus.REJECTED:
            return await self.decline(booking_id, driver_id)
        if target == BookingStatus.ARRIVED:
            return await self.mark_arrived(booking_id, driver_id)
        if target == BookingStatus.IN_PROGRESS:
            return await self.start_trip(booking_id, otp, driver_id)
        if target == BookingStatus.COMPLETED:
            return await self.complete(booking_id, driver_id)
        if target == BookingStatus.CANCELLED:
            if driver_id is not None:
                raise PermissionDeniedError("Drivers decline requests instead")
            return await self.cancel(booking_id, actor.user_id)
        raise InvalidStateError(f"A booking cannot be moved back to {target.value}")

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, booking_id: int) -> BookingModel:
        async with self._session_factory() as session:
            return await self._require(BookingRepository(session), booking_id)

    async def get_detail(self, booking_id: int) -> BookingDetail:
        async with self._session_factory() as session:
            booking = await self._require(BookingRepository(session), booking_id)
            offer = driver = None
            if booking.offer_id is not None:
                offer = await VehicleOfferRepository(session).get_by_id(booking.offer_id)
            if offer is not None and offer.driver_id is not None:
                driver = await UserRepository(session).get_by_id(offer.driver_id)
            return BookingDetail(booking=booking, offer=offer, driver=driver)

    async def list_by_status(
        self, status: BookingStatus, offer_id: Optional[int] = None
    ) -> list[BookingModel]:
        """Bookings in *status*; stale pending requests are left out.

        Pending pool join requests are not listed either: only the pool's
        driver answers them, through ``PoolService.respond_to_join``.
        """
        status = BookingStatus(status)
        created_after = None
        if status == BookingStatus.PENDING:
            created_after = self.pending_cutoff()
        async with self._session_factory() as session:
            return await BookingRepository(session).list_by_status(
                status,
                created_after=created_after,
                offer_id=offer_id,
                exclude_join_requests=status == BookingStatus.PENDING,
            )

    async def active_for_passenger(self, passenger_id: int) -> Optional[BookingModel]:
        async with self._session_factory() as session:
            return await BookingRepository(session).active_for_passenger(passenger_id)

    async def active_for_driver(self, driver_id: int) -> Optional[BookingModel]:
        async with self._session_factory() as session:
            return await BookingRepository(session).active_for_driver(driver_id)

    def pending_cutoff(self) -> datetime:
        return self._clock() - timedelta(seconds=self._settings.pending_expiry_seconds)

    # ── Active expiry (opt-in, run by the maintenance worker) ─────────

    async def expire_stale(self) -> int:
        async with self._session_factory() as session:
            stale = await BookingRepository(session).list_stale_pending(
                self.pending_cutoff()
            )
        expired = 0
        for booking in stale:
            extra = {"join_status": JoinStatus.REJECTED} if booking.is_join_request else {}
            try:
                await self._transition(booking.id, BookingStatus.CANCELLED, **extra)
            except InvalidStateError:
                continue  # picked up by a driver in the meantime
            expired += 1
        if expired:
            logger.info("Expired %d stale pending bookings", expired)
        return expired

    # ── Internals ─────────────────────────────────────────────────────

    def _ledger(self, session: AsyncSession) -> SeatLedger:
        return SeatLedger(session, self._settings.destination_cell_resolution)

    @staticmethod
    async def _require(bookings: BookingRepository, booking_id: int) -> BookingModel:
        booking = await bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def _snapshot(
        self, booking_id: int
    ) -> tuple[BookingModel, Optional[VehicleOfferModel]]:
        """Read the booking and its offer outside any lock.

        ``offer_id`` never changes after creation, so it is safe to pick the
        lock key from this read.
        """
        async with self._session_factory() as session:
            booking = await self._require(BookingRepository(session), booking_id)
            offer = None
            if booking.offer_id is not None:
                offer = await VehicleOfferRepository(session).get_by_id(booking.offer_id)
        if offer is None and booking.status not in (
            BookingStatus.PENDING,
            BookingStatus.CANCELLED,
            BookingStatus.REJECTED,
        ):
            raise InvalidStateError(f"Booking {booking_id} has no vehicle")
        return booking, offer

    async def _route_for_first_seat(
        self, booking: BookingModel, offer: Optional[VehicleOfferModel]
    ) -> Optional[RouteResult]:
        """Ask the provider for a route only when the seat will open a pool."""
        if offer is None:
            raise InvalidStateError(f"Booking {booking.id} has no vehicle")
        if offer.fare_type != FareType.POOL or offer.final_destination is not None:
            return None
        return await self._routing.route(
            Location(booking.pickup_lat, booking.pickup_lng),
            Location(booking.dropoff_lat, booking.dropoff_lng),
        )

    @staticmethod
    def _not_join_request(booking: BookingModel) -> None:
        if booking.is_join_request:
            raise InvalidStateError(
                "Pool join requests are answered by the pool's driver"
            )

    @staticmethod
    def _distance_of(booking: BookingModel) -> float:
        if booking.distance_km is not None:
            return booking.distance_km
        return haversine_km(
            booking.pickup_lat, booking.pickup_lng,
            booking.dropoff_lat, booking.dropoff_lng,
        )

    async def _transition(
        self,
        booking_id: int,
        target: BookingStatus,
        *,
        driver_id: Optional[int] = None,
        driver_required: bool = False,
        guard: Optional[Callable[[BookingModel], None]] = None,
        **values,
    ) -> BookingModel:
        """Seat-neutral compare-and-swap transition."""
        async with self._session_factory.begin() as session:
            bookings = BookingRepository(session)
            booking = await self._require(bookings, booking_id)
            if driver_id is not None or driver_required:
                offer = None
                if booking.offer_id is not None:
                    offer = await VehicleOfferRepository(session).get_by_id(booking.offer_id)
                check_driver(offer, driver_id, required=driver_required)
            if guard is not None:
                guard(booking)
            current = BookingStatus(booking.status)
            ensure_transition(current, target)

            swapped = await bookings.compare_and_set(
                booking_id,
                expected_status=current,
                status=target,
                updated_at=self._clock(),
                **values,
            )
            if not swapped:
                raise InvalidStateError(
                    f"Booking {booking_id} changed concurrently; reload and retry"
                )
            await bookings.reload(booking)

        logger.info("Booking %d: %s -> %s", booking_id, current.value, target.value)
        keys = [booking_key(booking_id)]
        if booking.offer_id is not None:
            keys.append(offer_key(booking.offer_id))
        self._feed.publish(*keys)
        return booking
