"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Contended writes (booking status, offer occupancy) are expressed as
conditional ``UPDATE ... WHERE <expected pre-state>`` statements.  The
database applies each one atomically, so of two racing writers exactly one
sees ``rowcount == 1``; the loser is told so and never overwrites.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, UserModel, VehicleOfferModel
from tripcore.domain.enums import (
    BOARDABLE_OFFER_STATUSES,
    HISTORY_STATUSES,
    SEATED_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    FareType,
    JoinStatus,
    OfferStatus,
)


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def reload(self, booking: BookingModel) -> BookingModel:
        await self.session.refresh(booking)
        return booking

    async def compare_and_set(
        self,
        booking_id: int,
        *,
        expected_status: BookingStatus | None = None,
        expected_join_status: JoinStatus | None = None,
        **values,
    ) -> bool:
        """Apply *values* only if the stored pre-state still matches."""
        stmt = update(BookingModel).where(BookingModel.id == booking_id)
        if expected_status is not None:
            stmt = stmt.where(BookingModel.status == expected_status)
        if expected_join_status is not None:
            stmt = stmt.where(BookingModel.join_status == expected_join_status)
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_status(
        self,
        status: BookingStatus,
        *,
        created_after: datetime | None = None,
        offer_id: int | None = None,
        exclude_join_requests: bool = False,
    ) -> list[BookingModel]:
        query = select(BookingModel).where(BookingModel.status == status)
        if created_after is not None:
            query = query.where(BookingModel.created_at > created_after)
        if offer_id is not None:
            query = query.where(BookingModel.offer_id == offer_id)
        if exclude_join_requests:
            query = query.where(
                or_(
                    BookingModel.join_status.is_(None),
                    BookingModel.join_status != JoinStatus.PENDING,
                )
            )
        result = await self.session.execute(
            query.order_by(BookingModel.created_at, BookingModel.id)
        )
        return list(result.scalars().all())

    async def list_pool_anchors(
        self, bbox: tuple[float, float, float, float] | None = None
    ) -> list[BookingModel]:
        """Accepted pool owners, optionally pre-filtered by pickup box."""
        query = select(BookingModel).where(
            BookingModel.status == BookingStatus.ACCEPTED,
            BookingModel.is_pool.is_(True),
            BookingModel.join_status == JoinStatus.OWNER,
        )
        if bbox is not None:
            min_lat, max_lat, min_lng, max_lng = bbox
            query = query.where(
                BookingModel.pickup_lat.between(min_lat, max_lat),
                BookingModel.pickup_lng.between(min_lng, max_lng),
            )
        result = await self.session.execute(query.order_by(BookingModel.id))
        return list(result.scalars().all())

    async def list_pool_passengers(self, anchor_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.pool_owner_id == anchor_id,
                BookingModel.join_status == JoinStatus.ACCEPTED,
            )
            .order_by(BookingModel.id)
        )
        return list(result.scalars().all())

    async def list_pending_join_requests(self, offer_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.offer_id == offer_id,
                BookingModel.join_status == JoinStatus.PENDING,
            )
            .order_by(BookingModel.created_at, BookingModel.id)
        )
        return list(result.scalars().all())

    async def active_for_passenger(self, passenger_id: int) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.not_in(list(TERMINAL_STATUSES)),
            )
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def active_for_driver(self, driver_id: int) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .join(VehicleOfferModel, BookingModel.offer_id == VehicleOfferModel.id)
            .where(
                VehicleOfferModel.driver_id == driver_id,
                BookingModel.status.in_(SEATED_STATUSES),
            )
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def history_for_passenger(self, passenger_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(HISTORY_STATUSES),
            )
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def history_for_driver(self, driver_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .join(VehicleOfferModel, BookingModel.offer_id == VehicleOfferModel.id)
            .where(
                VehicleOfferModel.driver_id == driver_id,
                BookingModel.status.in_(HISTORY_STATUSES),
            )
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def completed_totals_for_driver(self, driver_id: int) -> tuple[int, int]:
        """Return ``(sum of fares, number of trips)`` of completed bookings."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(BookingModel.fare), 0),
                func.count(BookingModel.id),
            )
            .select_from(BookingModel)
            .join(VehicleOfferModel, BookingModel.offer_id == VehicleOfferModel.id)
            .where(
                VehicleOfferModel.driver_id == driver_id,
                BookingModel.status == BookingStatus.COMPLETED,
            )
        )
        total, count = result.one()
        return int(total or 0), int(count or 0)

    async def list_seated(self, offer_id: int) -> list[BookingModel]:
        """Bookings currently holding a seat on *offer_id*."""
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.offer_id == offer_id,
                BookingModel.status.in_(SEATED_STATUSES),
            )
            .order_by(BookingModel.id)
        )
        return list(result.scalars().all())

    async def count_in_status(self, offer_id: int, statuses: Iterable[BookingStatus]) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.offer_id == offer_id,
                BookingModel.status.in_(list(statuses)),
            )
        )
        return result.scalar() or 0

    async def list_stale_pending(self, created_before: datetime) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel).where(
                BookingModel.status == BookingStatus.PENDING,
                BookingModel.created_at <= created_before,
            )
        )
        return list(result.scalars().all())

    async def terminal_ids(self, booking_ids: Iterable[int]) -> set[int]:
        """Subset of *booking_ids* that are terminal or no longer exist."""
        ids = set(booking_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(BookingModel.id).where(
                BookingModel.id.in_(ids),
                BookingModel.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        return ids - set(result.scalars().all())


class VehicleOfferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, offer: VehicleOfferModel) -> VehicleOfferModel:
        self.session.add(offer)
        await self.session.flush()
        return offer

    async def get_by_id(self, offer_id: int) -> Optional[VehicleOfferModel]:
        return await self.session.get(VehicleOfferModel, offer_id)

    async def reload(self, offer: VehicleOfferModel) -> VehicleOfferModel:
        await self.session.refresh(offer)
        return offer

    async def list_all(self, available_only: bool = False) -> list[VehicleOfferModel]:
        query = select(VehicleOfferModel)
        if available_only:
            query = query.where(VehicleOfferModel.is_available.is_(True))
        result = await self.session.execute(query.order_by(VehicleOfferModel.id))
        return list(result.scalars().all())

    async def list_route_candidates(self) -> list[VehicleOfferModel]:
        """Pool offers that are boardable, have a free seat and a route."""
        result = await self.session.execute(
            select(VehicleOfferModel).where(
                VehicleOfferModel.fare_type == FareType.POOL,
                VehicleOfferModel.status.in_(BOARDABLE_OFFER_STATUSES),
                VehicleOfferModel.is_available.is_(True),
                VehicleOfferModel.occupied < VehicleOfferModel.capacity,
                VehicleOfferModel.destination_lat.is_not(None),
                VehicleOfferModel.destination_lng.is_not(None),
                VehicleOfferModel.route_geometry.is_not(None),
            )
        )
        return list(result.scalars().all())

    async def list_active_pools(self) -> list[VehicleOfferModel]:
        result = await self.session.execute(
            select(VehicleOfferModel)
            .where(
                VehicleOfferModel.fare_type == FareType.POOL,
                VehicleOfferModel.occupied > 0,
            )
            .order_by(VehicleOfferModel.id)
        )
        return list(result.scalars().all())

    async def take_seat(self, offer_id: int) -> bool:
        """Atomically occupy one seat; ``False`` when the offer is full."""
        result = await self.session.execute(
            update(VehicleOfferModel)
            .where(
                VehicleOfferModel.id == offer_id,
                VehicleOfferModel.occupied < VehicleOfferModel.capacity,
            )
            .values(occupied=VehicleOfferModel.occupied + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_seat(self, offer_id: int) -> bool:
        result = await self.session.execute(
            update(VehicleOfferModel)
            .where(
                VehicleOfferModel.id == offer_id,
                VehicleOfferModel.occupied > 0,
            )
            .values(occupied=VehicleOfferModel.occupied - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def retire_idle_for_driver(self, driver_id: int) -> int:
        """Mark the driver's still-listed empty offers unavailable."""
        result = await self.session.execute(
            update(VehicleOfferModel)
            .where(
                and_(
                    VehicleOfferModel.driver_id == driver_id,
                    VehicleOfferModel.is_available.is_(True),
                    VehicleOfferModel.occupied == 0,
                )
            )
            .values(is_available=False, status=OfferStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_by_mobile(self, mobile: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.mobile == mobile)
        )
        return result.scalar_one_or_none()
