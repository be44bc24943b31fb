"""
Shared test fixtures.

Every test gets its own SQLite database file (via aiosqlite) built from the
real ORM models, so tests run without Docker / PostgreSQL / Redis and
exercise the same repositories as production.  Time is driven by a fake
clock so that expiry boundaries are deterministic.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripcore.config import Settings
from tripcore.domain.entities import Position, VehicleDescriptor
from tripcore.domain.enums import FareType, UserRole
from tripcore.infrastructure import models  # noqa: F401  (registers tables)
from tripcore.infrastructure.database import Base, build_engine, build_session_factory
from tripcore.infrastructure.location_store import MemoryLocationStore
from tripcore.infrastructure.models import UserModel
from tripcore.services.container import Services, build_services


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tripcore.db'}",
        redis_url=None,
        location_store="memory",
        routing_enabled=False,
    )


@pytest_asyncio.fixture
async def session_factory(
    settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables, yield a session factory, then dispose of the engine."""
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def services(session_factory, settings, clock) -> Services:
    return build_services(
        session_factory,
        settings=settings,
        location_store=MemoryLocationStore(),
        clock=clock,
    )


@pytest.fixture
def make_user(session_factory):
    counter = iter(range(1, 10_000))

    async def _make(role: UserRole = UserRole.PASSENGER, name: str = "") -> UserModel:
        n = next(counter)
        async with session_factory.begin() as session:
            user = UserModel(
                mobile=f"+91980000{n:04d}",
                name=name or f"{role.value}-{n}",
                role=role,
                is_verified=True,
            )
            session.add(user)
            await session.flush()
        return user

    return _make


@pytest.fixture
def make_offer(services, make_user):
    async def _make(
        capacity: int = 4,
        fare_type: FareType = FareType.POOL,
        price_per_km=None,
        driver=None,
    ):
        driver = driver or await make_user(UserRole.DRIVER)
        offer = await services.offers.go_online(
            driver.id,
            VehicleDescriptor("Maruti Dzire", f"KA01AB{driver.id:04d}", capacity),
            Position(12.9712, 77.5940),
            fare_type=fare_type,
            price_per_km=price_per_km,
        )
        return offer, driver

    return _make
