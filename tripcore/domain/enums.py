"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED,
    },
    BookingStatus.ACCEPTED: {BookingStatus.ARRIVED},
    BookingStatus.ARRIVED: {BookingStatus.IN_PROGRESS},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, nxt in BOOKING_TRANSITIONS.items() if not nxt
)

# Statuses shown in ride history
HISTORY_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

# A booking in one of these holds a seat on its offer
SEATED_STATUSES = (
    BookingStatus.ACCEPTED,
    BookingStatus.ARRIVED,
    BookingStatus.IN_PROGRESS,
)


class JoinStatus(str, enum.Enum):
    OWNER = "owner"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class JoinAction(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class FareType(str, enum.Enum):
    ECONOMY = "economy"
    PREMIUM = "premium"
    POOL = "pool"


class OfferStatus(str, enum.Enum):
    EMPTY = "empty"
    BOARDING = "boarding"
    FULL = "full"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Offers in these statuses can still pick up passengers along their route
BOARDABLE_OFFER_STATUSES = (OfferStatus.EMPTY, OfferStatus.BOARDING)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum *values* (lower-case wire strings) rather than names."""
    return [member.value for member in enum_cls]
