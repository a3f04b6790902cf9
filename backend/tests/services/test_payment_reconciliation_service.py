"""
Tests for re-deriving hold and booking state from the authoritative payment row.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from tests.factories.booking_builders import create_booking, create_payment, holds_for

from ridepay.constants.payment_status import BookingStatus, HoldStatus, PaymentStatus
from ridepay.core.exceptions import RecordNotFound, RepositoryException
from ridepay.services.payment_reconciliation_service import PaymentReconciliationService


@pytest.fixture
def reconciliation_service(db, clock) -> PaymentReconciliationService:
    return PaymentReconciliationService(db, clock=clock)


def test_captured_payment_confirms_pending_booking(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock())
    payment = create_payment(db, booking, now=clock(), status=PaymentStatus.CAPTURED)

    report = reconciliation_service.reconcile_booking(booking.id)

    assert report.changed is True
    assert report.holds_updated == 1
    assert report.booking_updated is True
    assert [hold.status for hold in holds_for(db, payment.id)] == ["captured"]
    db.refresh(booking)
    assert booking.status == "confirmed"
    assert booking.payment_status == "captured"


def test_refunded_payment_closes_booking_with_its_reason(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock(), status=BookingStatus.CONFIRMED)
    payment = create_payment(
        db,
        booking,
        now=clock(),
        status=PaymentStatus.REFUNDED,
        refund_reason="timeout",
        refunded_amount=Decimal("40.00"),
        hold_status=HoldStatus.CAPTURED,
    )

    reconciliation_service.reconcile_booking(booking.id)

    assert [hold.status for hold in holds_for(db, payment.id)] == ["refunded"]
    db.refresh(booking)
    assert booking.status == "timeout_cancelled"
    assert booking.payment_status == "refunded"


def test_partial_refund_sets_partially_refunded(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock(), status=BookingStatus.CANCELLED)
    create_payment(
        db,
        booking,
        now=clock(),
        status=PaymentStatus.REFUNDED,
        refund_reason="passenger_cancelled",
        refunded_amount=Decimal("30.00"),
        hold_status=HoldStatus.REFUNDED,
    )

    report = reconciliation_service.reconcile_booking(booking.id)

    assert report.holds_updated == 0
    db.refresh(booking)
    assert booking.status == "cancelled"
    assert booking.payment_status == "partially_refunded"


def test_legacy_voided_payment_releases_hold(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock())
    payment = create_payment(db, booking, now=clock(), status="voided")

    report = reconciliation_service.reconcile_booking(booking.id)

    assert report.payment_status == "cancelled"
    assert [hold.status for hold in holds_for(db, payment.id)] == ["released"]
    db.refresh(booking)
    assert booking.status == "cancelled"
    assert booking.payment_status == "cancelled"


def test_closed_booking_status_is_left_alone(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock(), status=BookingStatus.REJECTED)
    create_payment(
        db,
        booking,
        now=clock(),
        status=PaymentStatus.CANCELLED,
        refund_reason="driver_rejected",
        hold_status=HoldStatus.RELEASED,
    )

    reconciliation_service.reconcile_booking(booking.id)

    db.refresh(booking)
    assert booking.status == "rejected"


def test_consistent_booking_is_unchanged(reconciliation_service, hold_service, db, clock):
    booking = create_booking(db, now=clock())
    hold_service.create_hold("40", "pm_card_visa", booking.id, "01HZZZZZZZZZZZZZZZZZZZZZZP")

    report = reconciliation_service.reconcile_booking(booking.id)

    assert report.changed is False


def test_booking_without_payments(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock())

    with pytest.raises(RecordNotFound):
        reconciliation_service.reconcile_booking(booking.id)


def test_reconcile_drift_only_touches_drifted_bookings(reconciliation_service, hold_service, db, clock):
    drifted = create_booking(db, now=clock())
    create_payment(db, drifted, now=clock(), status=PaymentStatus.CAPTURED)
    healthy = create_booking(db, now=clock())
    hold_service.create_hold("40", "pm_card_visa", healthy.id, "01HZZZZZZZZZZZZZZZZZZZZZZP")

    result = reconciliation_service.reconcile_drift()

    assert result.processed == 1
    assert result.errors == 0
    db.refresh(drifted)
    db.refresh(healthy)
    assert drifted.status == "confirmed"
    assert healthy.status == "pending"


def test_reconcile_drift_counts_failures(reconciliation_service, db, clock):
    booking = create_booking(db, now=clock())
    create_payment(db, booking, now=clock(), status=PaymentStatus.CANCELLED)

    with patch.object(
        reconciliation_service,
        "reconcile_booking",
        side_effect=RepositoryException("connection dropped"),
    ):
        result = reconciliation_service.reconcile_drift()

    assert result.errors == 1
    assert result.processed == 0
