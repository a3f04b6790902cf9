"""
Tests for rider cancellations: eligibility and the refund each tier produces.
"""

from decimal import Decimal

import pytest
from tests.factories.booking_builders import PASSENGER_ID, create_booking, payments_for

from ridepay.constants.payment_status import BookingStatus
from ridepay.core.exceptions import CancellationNotAllowed, RecordNotFound
from ridepay.services.booking_cancellation_service import BookingCancellationService


@pytest.fixture
def cancellation_service(db, hold_service) -> BookingCancellationService:
    return BookingCancellationService(db, hold_service)


def _confirmed_booking(db, clock, hold_service, hours_until_departure: float):
    booking = create_booking(db, now=clock(), hours_until_departure=hours_until_departure)
    hold_service.create_hold(booking.total_amount, "pm_card_visa", booking.id, PASSENGER_ID)
    hold_service.capture_hold(booking.id)
    return booking


class TestEligibility:
    def test_pending_booking_gets_full_refund(self, cancellation_service, db, clock):
        booking = create_booking(db, now=clock(), hours_until_departure=1)

        eligibility = cancellation_service.check_cancellation_eligibility(booking.id)

        assert eligibility.can_cancel is True
        assert eligibility.refund_percentage == 100
        assert eligibility.refund_amount == Decimal("40.00")
        assert eligibility.cancellation_fee == Decimal("0.00")

    @pytest.mark.parametrize(
        "hours,percentage,refund",
        [(24, 100, "40.00"), (8, 75, "30.00"), (3, 50, "20.00"), (1, 25, "10.00")],
    )
    def test_confirmed_booking_follows_tiers(
        self, cancellation_service, db, clock, hours, percentage, refund
    ):
        booking = create_booking(
            db, now=clock(), hours_until_departure=hours, status=BookingStatus.CONFIRMED
        )

        eligibility = cancellation_service.check_cancellation_eligibility(booking.id)

        assert eligibility.can_cancel is True
        assert eligibility.refund_percentage == percentage
        assert eligibility.refund_amount == Decimal(refund)
        assert eligibility.hours_until_departure == pytest.approx(hours)

    def test_ride_in_progress_can_cancel_without_refund(self, cancellation_service, db, clock):
        booking = create_booking(
            db, now=clock(), hours_until_departure=-1, status=BookingStatus.CONFIRMED
        )

        eligibility = cancellation_service.check_cancellation_eligibility(booking.id)

        assert eligibility.can_cancel is True
        assert eligibility.refund_percentage == 0
        assert eligibility.cancellation_fee == Decimal("40.00")

    def test_ride_two_hours_past_departure_is_completed(self, cancellation_service, db, clock):
        booking = create_booking(
            db, now=clock(), hours_until_departure=-2, status=BookingStatus.CONFIRMED
        )

        eligibility = cancellation_service.check_cancellation_eligibility(booking.id)

        assert eligibility.can_cancel is False
        assert eligibility.reason == "Cannot cancel completed rides"

    @pytest.mark.parametrize(
        "status,reason",
        [
            (BookingStatus.CANCELLED, "Booking is already cancelled"),
            (BookingStatus.TIMEOUT_CANCELLED, "Booking already timed out"),
            (BookingStatus.REJECTED, "Booking was already rejected"),
            (BookingStatus.COMPLETED, "Cannot cancel completed rides"),
        ],
    )
    def test_closed_bookings_are_not_cancellable(
        self, cancellation_service, db, clock, status, reason
    ):
        booking = create_booking(db, now=clock(), status=status)

        eligibility = cancellation_service.check_cancellation_eligibility(booking.id)

        assert eligibility.can_cancel is False
        assert eligibility.reason == reason

    def test_other_riders_cannot_cancel(self, cancellation_service, db, clock):
        booking = create_booking(db, now=clock())

        eligibility = cancellation_service.check_cancellation_eligibility(
            booking.id, user_id="01HSOMEONEELSE000000000000"
        )

        assert eligibility.can_cancel is False
        assert eligibility.reason == "You are not authorized to cancel this booking"

    def test_unknown_booking(self, cancellation_service):
        with pytest.raises(RecordNotFound):
            cancellation_service.check_cancellation_eligibility("01HNOTAREALBOOKING00000000")


class TestCancelBooking:
    def test_pending_booking_voids_hold(self, cancellation_service, hold_service, db, clock, stripe_provider):
        booking = create_booking(db, now=clock())
        created = hold_service.create_hold("40", "pm_card_visa", booking.id, PASSENGER_ID)

        result = cancellation_service.cancel_booking(booking.id, PASSENGER_ID)

        assert result.booking_status == "cancelled"
        assert result.refunded is True
        assert result.refund_amount == Decimal("40.00")
        assert result.cancellation_fee == Decimal("0.00")
        assert stripe_provider.status_of(created.external_ref) == "voided"

    def test_confirmed_booking_partial_refund(
        self, cancellation_service, hold_service, db, clock, stripe_provider
    ):
        booking = _confirmed_booking(db, clock, hold_service, hours_until_departure=8)

        result = cancellation_service.cancel_booking(booking.id)

        assert result.refund_amount == Decimal("30.00")
        assert result.cancellation_fee == Decimal("10.00")
        assert result.booking_status == "cancelled"
        [payment] = payments_for(db, booking.id)
        assert payment.status == "refunded"
        assert payment.refunded_amount == Decimal("30.00")
        assert payment.cancellation_fee == Decimal("10.00")
        db.refresh(booking)
        assert booking.payment_status == "partially_refunded"

    def test_confirmed_booking_inside_grace_keeps_full_fee(
        self, cancellation_service, hold_service, db, clock, stripe_provider
    ):
        booking = _confirmed_booking(db, clock, hold_service, hours_until_departure=1)
        clock.advance(hours=2)

        result = cancellation_service.cancel_booking(booking.id)

        assert result.refunded is False
        assert result.refund_amount == Decimal("0.00")
        assert result.cancellation_fee == Decimal("40.00")
        assert stripe_provider.count("refund") == 0
        [payment] = payments_for(db, booking.id)
        assert payment.status == "captured"
        assert payment.cancellation_fee == Decimal("40.00")
        db.refresh(booking)
        assert booking.status == "cancelled"

    def test_repeat_cancel_returns_stored_outcome(
        self, cancellation_service, hold_service, db, clock, stripe_provider
    ):
        booking = _confirmed_booking(db, clock, hold_service, hours_until_departure=8)
        first = cancellation_service.cancel_booking(booking.id)
        clock.advance(hours=7)

        second = cancellation_service.cancel_booking(booking.id)

        assert second.already_cancelled is True
        assert second.refund_amount == first.refund_amount
        assert second.cancellation_fee == first.cancellation_fee
        assert stripe_provider.count("refund") == 1

    def test_booking_without_payment_is_just_cancelled(self, cancellation_service, db, clock):
        booking = create_booking(db, now=clock())

        result = cancellation_service.cancel_booking(booking.id)

        assert result.booking_status == "cancelled"
        assert result.refunded is False
        assert result.refund_amount == Decimal("0.00")

    def test_refused_cancellation_raises(self, cancellation_service, db, clock, stripe_provider):
        booking = create_booking(db, now=clock(), status=BookingStatus.TIMEOUT_CANCELLED)

        with pytest.raises(CancellationNotAllowed) as exc_info:
            cancellation_service.cancel_booking(booking.id)

        assert exc_info.value.message == "Booking already timed out"
        assert exc_info.value.status_code == 422
        assert stripe_provider.calls == []
