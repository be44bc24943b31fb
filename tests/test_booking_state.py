"""Unit tests for booking lifecycle rules (State Pattern)."""

import pytest

from tripcore.domain.entities import (
    Location,
    VehicleDescriptor,
    ensure_transition,
    generate_otp,
    offer_status_for,
)
from tripcore.domain.enums import (
    BOOKING_TRANSITIONS,
    TERMINAL_STATUSES,
    BookingStatus,
    OfferStatus,
)
from tripcore.domain.errors import InvalidStateError, ValidationError


class TestBookingStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, target",
        [
            (BookingStatus.PENDING, BookingStatus.ACCEPTED),
            (BookingStatus.PENDING, BookingStatus.CANCELLED),
            (BookingStatus.PENDING, BookingStatus.REJECTED),
            (BookingStatus.ACCEPTED, BookingStatus.ARRIVED),
            (BookingStatus.ARRIVED, BookingStatus.IN_PROGRESS),
            (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
        ],
    )
    def test_forward_edges(self, current, target):
        ensure_transition(current, target)

    # ── Invalid transitions ───────────────────────────────────────

    def test_skipping_a_step_fails(self):
        with pytest.raises(InvalidStateError):
            ensure_transition(BookingStatus.PENDING, BookingStatus.IN_PROGRESS)

    def test_no_cancel_after_accept(self):
        with pytest.raises(InvalidStateError):
            ensure_transition(BookingStatus.ACCEPTED, BookingStatus.CANCELLED)

    def test_going_back_fails(self):
        with pytest.raises(InvalidStateError):
            ensure_transition(BookingStatus.ARRIVED, BookingStatus.ACCEPTED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    def test_terminal_states_never_change(self, terminal):
        for target in BookingStatus:
            with pytest.raises(InvalidStateError, match="can no longer change"):
                ensure_transition(terminal, target)

    def test_terminal_states_have_no_edges(self):
        for terminal in TERMINAL_STATUSES:
            assert BOOKING_TRANSITIONS[terminal] == set()

    def test_accepts_raw_values(self):
        ensure_transition("pending", "accepted")


class TestOtp:
    def test_four_digits(self):
        for _ in range(200):
            otp = generate_otp()
            assert len(otp) == 4
            assert otp.isdigit()
            assert otp[0] != "0"


class TestOfferStatus:
    def test_empty(self):
        assert offer_status_for(0, 4) == OfferStatus.EMPTY

    def test_boarding(self):
        assert offer_status_for(2, 4) == OfferStatus.BOARDING

    def test_full(self):
        assert offer_status_for(4, 4) == OfferStatus.FULL


class TestValueObjects:
    def test_latitude_out_of_range(self):
        with pytest.raises(ValidationError):
            Location(91.0, 77.0)

    def test_longitude_out_of_range(self):
        with pytest.raises(ValidationError):
            Location(12.0, 181.0)

    def test_capacity_at_least_one(self):
        with pytest.raises(ValidationError):
            VehicleDescriptor("Dzire", "KA01", capacity=0)
