"""
SQLAlchemy ORM models.

Tables
------
* ``users``           -- passengers and drivers
* ``vehicle_offers``  -- a driver's vehicle for one shift (a "ride")
* ``bookings``        -- one passenger's trip request / contract

Indexes
-------
* **B-Tree** on booking ``status``, ``passenger_id``, ``offer_id``,
  ``pool_owner_id``, ``join_status`` and the anchor pickup coordinates, which
  the matching engine and the polling endpoints filter on.
* **CHECK** ``0 <= occupied <= capacity`` backs the conditional seat updates.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from tripcore.domain.entities import utcnow
from tripcore.domain.enums import (
    BookingStatus,
    FareType,
    JoinStatus,
    OfferStatus,
    UserRole,
    enum_values,
)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=enum_values)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mobile = Column(String(20), unique=True, nullable=False)
    name = Column(String(120), nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(_enum(UserRole, "user_role"), default=UserRole.PASSENGER, nullable=False)
    is_verified = Column(Boolean, default=False)
    avatar = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)


class VehicleOfferModel(Base):
    __tablename__ = "vehicle_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    car_model = Column(String(120), nullable=False)
    car_number = Column(String(32), nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    heading = Column(Float, default=0.0)

    is_available = Column(Boolean, default=True, nullable=False)
    fare_type = Column(_enum(FareType, "fare_type"), default=FareType.POOL, nullable=False)
    price_per_km = Column(Integer, nullable=False)
    capacity = Column(Integer, default=4, nullable=False)
    occupied = Column(Integer, default=0, nullable=False)
    status = Column(
        _enum(OfferStatus, "offer_status"), default=OfferStatus.EMPTY, nullable=False
    )

    # Populated only while a pool offer has somebody aboard
    destination_lat = Column(Float, nullable=True)
    destination_lng = Column(Float, nullable=True)
    destination_address = Column(Text, nullable=True)
    destination_cell = Column(String(20), nullable=True)
    route_geometry = Column(JSON(none_as_null=True), nullable=True)  # [[lat, lng], ...]

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_offers_capacity"),
        CheckConstraint(
            "occupied >= 0 AND occupied <= capacity", name="ck_offers_occupied"
        ),
        Index("idx_offers_driver", "driver_id"),
        Index("idx_offers_match", "fare_type", "status", "is_available"),
    )

    @property
    def final_destination(self):
        if self.destination_lat is None or self.destination_lng is None:
            return None
        return self.destination_lat, self.destination_lng

    @property
    def route(self) -> list[tuple[float, float]]:
        return [(p[0], p[1]) for p in (self.route_geometry or [])]

    @property
    def available_seats(self) -> int:
        return self.capacity - self.occupied


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    offer_id = Column(Integer, ForeignKey("vehicle_offers.id"), nullable=True)

    pickup_address = Column(Text, nullable=False, default="")
    dropoff_address = Column(Text, nullable=False, default="")
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    status = Column(
        _enum(BookingStatus, "booking_status"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    otp = Column(String(4), nullable=False)
    fare = Column(Integer, nullable=True)
    distance_km = Column(Float, nullable=True)

    is_pool = Column(Boolean, default=False, nullable=False)
    pool_owner_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    join_status = Column(_enum(JoinStatus, "join_status"), nullable=True)

    # Set from the service clock so that expiry can be tested deterministically
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_bookings_status", "status", "created_at"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_offer", "offer_id", "join_status"),
        Index("idx_bookings_pool_owner", "pool_owner_id", "join_status"),
        Index("idx_bookings_pickup", "pickup_lat", "pickup_lng"),
    )

    @property
    def pickup(self) -> tuple[float, float]:
        return self.pickup_lat, self.pickup_lng

    @property
    def dropoff(self) -> tuple[float, float]:
        return self.dropoff_lat, self.dropoff_lng

    @property
    def is_anchor(self) -> bool:
        return bool(self.is_pool) and self.join_status == JoinStatus.OWNER

    @property
    def is_join_request(self) -> bool:
        return bool(self.is_pool) and self.pool_owner_id is not None
