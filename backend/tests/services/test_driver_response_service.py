"""
Tests for DriverResponseService accept/reject transitions.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from tests.factories.booking_builders import PASSENGER_ID, create_booking, payments_for

from ridepay.constants.payment_status import BookingStatus
from ridepay.core.exceptions import BusinessRuleException, HoldExpired, RecordNotFound
from ridepay.services.driver_response_service import DriverResponseService


@pytest.fixture
def driver_service(db, hold_service) -> DriverResponseService:
    return DriverResponseService(db, hold_service)


@pytest.fixture
def held_booking(db, clock, hold_service):
    booking = create_booking(db, now=clock())
    hold_service.create_hold("40", "pm_card_visa", booking.id, PASSENGER_ID)
    return booking


class TestAccept:
    def test_accept_captures_and_confirms(self, driver_service, held_booking, db, clock):
        clock.advance(hours=2)

        result = driver_service.accept(held_booking.id)

        assert result.amount_captured == Decimal("40.00")
        db.refresh(held_booking)
        assert held_booking.status == "confirmed"
        assert held_booking.payment_status == "captured"

    def test_accept_is_idempotent(self, driver_service, held_booking, stripe_provider):
        first = driver_service.accept(held_booking.id)
        second = driver_service.accept(held_booking.id)

        assert second.already_captured is True
        assert second.capture_ref == first.capture_ref
        assert stripe_provider.count("capture") == 1

    def test_accept_after_deadline_times_out_booking(
        self, driver_service, held_booking, db, clock, stripe_provider
    ):
        clock.advance(hours=12)

        with pytest.raises(HoldExpired):
            driver_service.accept(held_booking.id)

        assert stripe_provider.count("capture") == 0
        assert stripe_provider.count("void") == 1
        db.refresh(held_booking)
        assert held_booking.status == "timeout_cancelled"
        [payment] = payments_for(db, held_booking.id)
        assert payment.status == "cancelled"
        assert payment.refund_reason == "timeout"

    def test_accept_after_deadline_without_payment(self, driver_service, db, clock):
        booking = create_booking(db, now=clock(), response_deadline=clock())

        with pytest.raises(HoldExpired):
            driver_service.accept(booking.id)

        db.refresh(booking)
        assert booking.status == "timeout_cancelled"

    def test_accept_paypal_booking(self, driver_service, hold_service, db, clock, paypal_provider):
        booking = create_booking(db, now=clock())
        hold_service.create_hold("40", "paypal", booking.id, PASSENGER_ID)

        result = driver_service.accept(booking.id)

        assert result.capture_ref.startswith("CAP-")
        assert paypal_provider.count("complete_authorization") == 1

    def test_cannot_accept_rejected_booking(self, driver_service, db, clock):
        booking = create_booking(db, now=clock(), status=BookingStatus.REJECTED)

        with pytest.raises(BusinessRuleException):
            driver_service.accept(booking.id)

    def test_unknown_booking(self, driver_service):
        with pytest.raises(RecordNotFound):
            driver_service.accept("01HNOTAREALBOOKING00000000")


class TestReject:
    def test_reject_voids_hold(self, driver_service, held_booking, db, stripe_provider):
        result = driver_service.reject(held_booking.id)

        assert result is not None
        assert result.action == "void"
        assert result.reason == "driver_rejected"
        db.refresh(held_booking)
        assert held_booking.status == "rejected"
        assert held_booking.payment_status == "cancelled"
        assert held_booking.response_deadline is None
        assert stripe_provider.count("void") == 1

    def test_repeat_reject_returns_stored_release(self, driver_service, held_booking, stripe_provider):
        driver_service.reject(held_booking.id)

        again = driver_service.reject(held_booking.id)

        assert again is not None
        assert again.already_processed is True
        assert stripe_provider.count("void") == 1

    def test_reject_without_payment(self, driver_service, db, clock):
        booking = create_booking(db, now=clock())

        assert driver_service.reject(booking.id) is None
        db.refresh(booking)
        assert booking.status == "rejected"

    def test_cannot_reject_confirmed_booking(self, driver_service, held_booking, stripe_provider):
        driver_service.accept(held_booking.id)

        with pytest.raises(BusinessRuleException):
            driver_service.reject(held_booking.id)
        assert stripe_provider.count("void") == 0

    def test_reject_losing_to_accept_keeps_capture(
        self, driver_service, hold_service, held_booking, db, stripe_provider
    ):
        def accepted_first(booking_id, expected, **values):
            hold_service.capture_hold(booking_id)
            return False

        with patch.object(
            driver_service.booking_repository, "update_if_status", side_effect=accepted_first
        ):
            with pytest.raises(BusinessRuleException) as exc_info:
                driver_service.reject(held_booking.id)

        assert exc_info.value.details["status"] == "confirmed"
        db.expire_all()
        [payment] = payments_for(db, held_booking.id)
        assert payment.status == "captured"
        assert stripe_provider.count("void") == 0
        assert stripe_provider.count("refund") == 0
