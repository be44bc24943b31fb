"""
Seat bookkeeping shared by the booking and pool services.

Must run inside the caller's transaction and under the offer's entity lock.
Occupancy is changed only through the conditional UPDATEs of
``VehicleOfferRepository``; the offer's status and pool metadata
(destination, route, cluster cell) are then derived from the new count.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tripcore.domain.entities import RouteResult, offer_status_for
from tripcore.domain.enums import BookingStatus, FareType, OfferStatus
from tripcore.domain.errors import CapacityExceededError
from tripcore.domain.geo import destination_cell
from tripcore.infrastructure.models import BookingModel, VehicleOfferModel
from tripcore.infrastructure.repositories import (
    BookingRepository,
    VehicleOfferRepository,
)


class SeatLedger:
    def __init__(self, session: AsyncSession, cell_resolution: int = 7):
        self.session = session
        self.offers = VehicleOfferRepository(session)
        self.bookings = BookingRepository(session)
        self.cell_resolution = cell_resolution

    async def occupy(
        self,
        offer: VehicleOfferModel,
        booking: BookingModel,
        route: Optional[RouteResult] = None,
    ) -> VehicleOfferModel:
        """Take one seat for *booking*; raise if the offer is already full."""
        if not await self.offers.take_seat(offer.id):
            raise CapacityExceededError(
                f"Vehicle {offer.id} has no free seat left"
            )
        await self.offers.reload(offer)

        if offer.status != OfferStatus.IN_PROGRESS:
            offer.status = offer_status_for(offer.occupied, offer.capacity)

        if offer.fare_type == FareType.POOL and offer.final_destination is None:
            self._attach_destination(offer, booking, route)

        await self.session.flush()
        return offer

    async def release(self, offer: VehicleOfferModel) -> VehicleOfferModel:
        await self.offers.release_seat(offer.id)
        await self.offers.reload(offer)

        if offer.occupied == 0:
            offer.status = (
                OfferStatus.EMPTY if offer.is_available else OfferStatus.COMPLETED
            )
            offer.destination_lat = None
            offer.destination_lng = None
            offer.destination_address = None
            offer.destination_cell = None
            offer.route_geometry = None
        else:
            riding = await self.bookings.count_in_status(
                offer.id, [BookingStatus.IN_PROGRESS]
            )
            offer.status = (
                OfferStatus.IN_PROGRESS
                if riding
                else offer_status_for(offer.occupied, offer.capacity)
            )

        await self.session.flush()
        return offer

    async def depart(self, offer: VehicleOfferModel) -> VehicleOfferModel:
        offer.status = OfferStatus.IN_PROGRESS
        await self.session.flush()
        return offer

    def _attach_destination(
        self,
        offer: VehicleOfferModel,
        booking: BookingModel,
        route: Optional[RouteResult],
    ) -> None:
        offer.destination_lat = booking.dropoff_lat
        offer.destination_lng = booking.dropoff_lng
        offer.destination_address = booking.dropoff_address
        offer.destination_cell = destination_cell(
            booking.dropoff_lat, booking.dropoff_lng, self.cell_resolution
        )
        # Without a routed path the straight pickup -> drop-off leg stands in
        geometry = route.geometry if route else [booking.pickup, booking.dropoff]
        offer.route_geometry = [[lat, lng] for lat, lng in geometry]
