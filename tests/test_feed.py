"""Change feed used by the long-poll endpoint."""

import asyncio

import pytest

from tripcore.domain.entities import Location, Stop
from tripcore.services.feed import ChangeFeed, booking_key, offer_key


class TestChangeFeed:
    @pytest.mark.asyncio
    async def test_publish_wakes_subscriber(self):
        feed = ChangeFeed()
        async with feed.subscribe("booking:1") as sub:
            asyncio.get_running_loop().call_later(0.01, feed.publish, "booking:1")
            assert await sub.wait(timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_timeout_without_publish(self):
        feed = ChangeFeed()
        async with feed.subscribe("booking:1") as sub:
            assert await sub.wait(timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_other_keys_do_not_wake(self):
        feed = ChangeFeed()
        async with feed.subscribe("booking:1") as sub:
            feed.publish("booking:2", "offer:1")
            assert await sub.wait(timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_publish_before_wait_is_not_lost(self):
        feed = ChangeFeed()
        async with feed.subscribe("booking:1") as sub:
            feed.publish("booking:1")
            assert await sub.wait(timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_subscription_cleaned_up(self):
        feed = ChangeFeed()
        async with feed.subscribe("booking:1"):
            assert feed.subscriber_count("booking:1") == 1
        assert feed.subscriber_count("booking:1") == 0

    def test_keys(self):
        assert booking_key(4) == "booking:4"
        assert offer_key(9) == "offer:9"


class TestServicesPublish:
    @pytest.mark.asyncio
    async def test_accept_publishes_booking(self, services, make_user, make_offer):
        offer, driver = await make_offer()
        passenger = await make_user()
        booking = await services.bookings.create(
            passenger.id,
            offer.id,
            Stop(Location(12.9716, 77.5946)),
            Stop(Location(12.9352, 77.6245)),
        )

        async with services.feed.subscribe(booking_key(booking.id)) as sub:
            await services.bookings.accept(booking.id, driver.id)
            assert await sub.wait(timeout=0.01) is True
