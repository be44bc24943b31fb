"""Offer registry (driver shifts) and earnings views."""

import pytest

from tripcore.domain.entities import Location, Position, Stop, VehicleDescriptor
from tripcore.domain.enums import BookingStatus, FareType, OfferStatus, UserRole
from tripcore.domain.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

MG_ROAD = Stop(Location(12.9716, 77.5946), "MG Road")
KORAMANGALA = Stop(Location(12.9352, 77.6245), "Koramangala")
DZIRE = VehicleDescriptor("Maruti Dzire", "KA01AB1234", 4)
HERE = Position(12.9712, 77.5940, 90.0)


async def ride(services, offer, driver, passenger, distance_km):
    booking = await services.bookings.create(
        passenger.id, offer.id, MG_ROAD, KORAMANGALA, distance_km=distance_km
    )
    await services.bookings.accept(booking.id, driver.id)
    await services.bookings.mark_arrived(booking.id, driver.id)
    await services.bookings.start_trip(booking.id, booking.otp, driver.id)
    return await services.bookings.complete(booking.id, driver.id)


class TestGoOnline:
    @pytest.mark.asyncio
    async def test_new_offer_is_empty_and_available(self, services, make_user):
        driver = await make_user(UserRole.DRIVER)
        offer = await services.offers.go_online(driver.id, DZIRE, HERE)

        assert offer.driver_id == driver.id
        assert offer.is_available
        assert offer.status == OfferStatus.EMPTY
        assert (offer.occupied, offer.capacity) == (0, 4)
        assert offer.fare_type == FareType.POOL
        assert offer.price_per_km == 12
        assert offer.heading == 90.0

    @pytest.mark.asyncio
    async def test_default_price_follows_fare_type(self, services, make_user):
        driver = await make_user(UserRole.DRIVER)
        offer = await services.offers.go_online(
            driver.id, DZIRE, HERE, fare_type=FareType.PREMIUM
        )
        assert offer.price_per_km == 25

    @pytest.mark.asyncio
    async def test_new_shift_retires_idle_offer(self, services, make_user):
        driver = await make_user(UserRole.DRIVER)
        first = await services.offers.go_online(driver.id, DZIRE, HERE)
        second = await services.offers.go_online(driver.id, DZIRE, HERE)

        available = await services.offers.list_offers(available_only=True)
        assert [o.id for o in available] == [second.id]
        assert (await services.offers.get_offer(first.id)).status == OfferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_passenger_cannot_go_online(self, services, make_user):
        passenger = await make_user()
        with pytest.raises(PermissionDeniedError):
            await services.offers.go_online(passenger.id, DZIRE, HERE)

    @pytest.mark.asyncio
    async def test_unknown_driver(self, services):
        with pytest.raises(ValidationError):
            await services.offers.go_online(999, DZIRE, HERE)

    def test_vehicle_needs_a_seat(self):
        with pytest.raises(ValidationError):
            VehicleDescriptor("Tuk", "KA00", 0)


class TestGoOffline:
    @pytest.mark.asyncio
    async def test_empty_offer_completes(self, services, make_offer):
        offer, driver = await make_offer()
        offline = await services.offers.go_offline(offer.id, driver.id)
        assert not offline.is_available
        assert offline.status == OfferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_riders_aboard_keep_their_trip(self, services, make_user, make_offer):
        offer, driver = await make_offer()
        passenger = await make_user()
        booking = await services.bookings.create(
            passenger.id, offer.id, MG_ROAD, KORAMANGALA, distance_km=3.0
        )
        await services.bookings.accept(booking.id, driver.id)

        offline = await services.offers.go_offline(offer.id, driver.id)
        assert not offline.is_available
        assert offline.status == OfferStatus.BOARDING

        await services.bookings.mark_arrived(booking.id, driver.id)
        await services.bookings.start_trip(booking.id, booking.otp, driver.id)
        await services.bookings.complete(booking.id, driver.id)
        assert (await services.offers.get_offer(offer.id)).status == OfferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_offline_offer_accepts_nothing_new(self, services, make_user, make_offer):
        offer, driver = await make_offer()
        passenger = await make_user()
        booking = await services.bookings.create(
            passenger.id, offer.id, MG_ROAD, KORAMANGALA
        )
        await services.offers.go_offline(offer.id, driver.id)
        with pytest.raises(InvalidStateError):
            await services.bookings.accept(booking.id, driver.id)

    @pytest.mark.asyncio
    async def test_other_driver(self, services, make_user, make_offer):
        offer, _ = await make_offer()
        other = await make_user(UserRole.DRIVER)
        with pytest.raises(PermissionDeniedError):
            await services.offers.go_offline(offer.id, other.id)

    @pytest.mark.asyncio
    async def test_unknown_offer(self, services):
        with pytest.raises(NotFoundError):
            await services.offers.go_offline(31337)


class TestActivePools:
    @pytest.mark.asyncio
    async def test_lists_pools_with_seated_riders(self, services, make_user, make_offer):
        offer, driver = await make_offer()
        await make_offer()  # idle pool offer
        passenger = await make_user()
        booking = await services.bookings.create(
            passenger.id, offer.id, MG_ROAD, KORAMANGALA, is_pool=True
        )
        await services.bookings.accept(booking.id, driver.id)

        pools = await services.offers.active_pools()
        assert [p.offer.id for p in pools] == [offer.id]
        assert [b.id for b in pools[0].riders] == [booking.id]


class TestEarnings:
    @pytest.mark.asyncio
    async def test_completed_trips_only(self, services, make_user, make_offer):
        offer, driver = await make_offer(price_per_km=10)
        passenger = await make_user()

        await ride(services, offer, driver, passenger, 2.0)
        await ride(services, offer, driver, passenger, 3.46)
        open_booking = await services.bookings.create(
            passenger.id, offer.id, MG_ROAD, KORAMANGALA
        )
        await services.bookings.accept(open_booking.id, driver.id)

        stats = await services.earnings.driver_stats(driver.id)
        assert stats.earnings == 20 + 35
        assert stats.total_trips == 2
        assert await services.earnings.driver_earnings(driver.id) == 55
        assert await services.earnings.driver_trip_count(driver.id) == 2

    @pytest.mark.asyncio
    async def test_new_driver_has_nothing(self, services, make_user):
        driver = await make_user(UserRole.DRIVER)
        stats = await services.earnings.driver_stats(driver.id)
        assert (stats.earnings, stats.total_trips) == (0, 0)

    @pytest.mark.asyncio
    async def test_history_shows_finished_bookings(self, services, make_user, make_offer):
        offer, driver = await make_offer()
        passenger = await make_user()
        done = await ride(services, offer, driver, passenger, 2.0)
        dropped = await services.bookings.create(
            passenger.id, offer.id, MG_ROAD, KORAMANGALA
        )
        await services.bookings.cancel(dropped.id, passenger.id)
        await services.bookings.create(passenger.id, offer.id, MG_ROAD, KORAMANGALA)

        history = await services.earnings.user_history(passenger.id)
        assert {b.id for b in history} == {done.id, dropped.id}
        assert {b.status for b in history} == {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
        }

        driver_history = await services.earnings.driver_history(driver.id)
        assert {b.id for b in driver_history} == {done.id, dropped.id}
