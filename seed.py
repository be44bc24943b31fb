"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates (around central Bangalore):
  - 6 passengers and 3 drivers
  - 3 vehicle offers (two pool, one economy), one per driver
  - 1 running pool: an accepted anchor booking plus a pending join request
  - 1 fresh pending booking and 1 completed trip
"""

import asyncio
import sys

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.domain.entities import Location, Position, Stop, VehicleDescriptor
from tripcore.domain.enums import FareType, UserRole
from tripcore.infrastructure.database import async_session_factory, engine
from tripcore.infrastructure.models import UserModel
from tripcore.services.container import Services, build_services

MG_ROAD = Stop(Location(12.9716, 77.5946), "MG Road Metro")
KORAMANGALA = Stop(Location(12.9352, 77.6245), "Koramangala 5th Block")
BRIGADE_ROAD = Stop(Location(12.9720, 77.5950), "Brigade Road")
FORUM_MALL = Stop(Location(12.9360, 77.6250), "Forum Mall")
INDIRANAGAR = Stop(Location(12.9784, 77.6408), "Indiranagar 100ft Road")
WHITEFIELD = Stop(Location(12.9698, 77.7500), "Whitefield ITPL")

PASSENGERS = [
    {"mobile": "+919800000001", "name": "Aarav Sharma"},
    {"mobile": "+919800000002", "name": "Priya Patel"},
    {"mobile": "+919800000003", "name": "Rohan Mehta"},
    {"mobile": "+919800000004", "name": "Sneha Gupta"},
    {"mobile": "+919800000005", "name": "Ananya Reddy"},
    {"mobile": "+919800000006", "name": "Meera Nair"},
]

DRIVERS = [
    {
        "mobile": "+919900000001",
        "name": "Vikram Singh",
        "car": VehicleDescriptor("Maruti Dzire", "KA01AB1234", 4),
        "position": Position(12.9712, 77.5940, 90.0),
        "fare_type": FareType.POOL,
    },
    {
        "mobile": "+919900000002",
        "name": "Karan Joshi",
        "car": VehicleDescriptor("Toyota Innova", "KA03CD5678", 6),
        "position": Position(12.9780, 77.6400, 180.0),
        "fare_type": FareType.POOL,
    },
    {
        "mobile": "+919900000003",
        "name": "Arjun Kumar",
        "car": VehicleDescriptor("Hyundai Aura", "KA05EF9012", 4),
        "position": Position(12.9350, 77.6240, 0.0),
        "fare_type": FareType.ECONOMY,
    },
]


async def seed(
    session_factory: async_sessionmaker[AsyncSession], services: Services
) -> bool:
    """Insert the sample data; ``False`` if the database already has users."""
    async with session_factory.begin() as session:
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return False

        # ── Users ─────────────────────────────────────────────────────
        passengers = [
            UserModel(role=UserRole.PASSENGER, is_verified=True, **p) for p in PASSENGERS
        ]
        drivers = [
            UserModel(
                role=UserRole.DRIVER,
                is_verified=True,
                mobile=d["mobile"],
                name=d["name"],
            )
            for d in DRIVERS
        ]
        session.add_all(passengers + drivers)
        await session.flush()
        passenger_ids = [p.id for p in passengers]
        driver_ids = [d.id for d in drivers]
    print(f"  Created {len(passenger_ids)} passengers and {len(driver_ids)} drivers")

    # ── Offers ────────────────────────────────────────────────────────
    offers = []
    for driver_id, d in zip(driver_ids, DRIVERS):
        offer = await services.offers.go_online(
            driver_id, d["car"], d["position"], fare_type=d["fare_type"]
        )
        offers.append(offer)
    print(f"  Created {len(offers)} vehicle offers")

    # ── A running pool ────────────────────────────────────────────────
    anchor = await services.bookings.create(
        passenger_ids[0], offers[0].id, MG_ROAD, KORAMANGALA, is_pool=True
    )
    await services.bookings.accept(anchor.id, driver_ids[0])
    await services.pools.request_join(
        anchor.id, passenger_ids[1], BRIGADE_ROAD, FORUM_MALL, distance_km=4.6
    )
    print("  Created 1 pool with a pending join request")

    # ── Pending booking ───────────────────────────────────────────────
    await services.bookings.create(
        passenger_ids[2], offers[1].id, INDIRANAGAR, WHITEFIELD, is_pool=True
    )

    # ── Completed trip ────────────────────────────────────────────────
    trip = await services.bookings.create(
        passenger_ids[3], offers[2].id, KORAMANGALA, INDIRANAGAR, distance_km=6.2
    )
    await services.bookings.accept(trip.id, driver_ids[2])
    await services.bookings.mark_arrived(trip.id, driver_ids[2])
    await services.bookings.start_trip(trip.id, trip.otp, driver_ids[2])
    await services.bookings.complete(trip.id, driver_ids[2])
    print("  Created 1 pending booking and 1 completed trip")
    return True


async def main() -> None:
    print("Seeding database...")
    services = build_services(async_session_factory)
    try:
        await seed(async_session_factory, services)
        print("Seeding complete!")
    except Exception as exc:
        print(f"Seeding failed: {exc}", file=sys.stderr)
        raise
    finally:
        await services.aclose()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
