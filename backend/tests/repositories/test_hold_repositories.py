"""
Tests for the booking, payment and hold repositories.
"""

from datetime import timedelta

from tests.factories.booking_builders import create_booking, create_payment

from ridepay.constants.payment_status import BookingStatus, HoldStatus, PaymentStatus
from ridepay.repositories.factory import RepositoryFactory


def test_conditional_update_applies_once(db, clock):
    booking = create_booking(db, now=clock())
    payment = create_payment(db, booking, now=clock())
    payments = RepositoryFactory.create_payment_repository(db)

    first = payments.update_if_status(payment.id, ["authorized"], status="captured")
    second = payments.update_if_status(payment.id, ["authorized"], status="cancelled")
    db.commit()

    assert first is True
    assert second is False
    db.refresh(payment)
    assert payment.status == "captured"


def test_active_payment_is_newest_in_active_status(db, clock):
    booking = create_booking(db, now=clock())
    create_payment(db, booking, now=clock(), status=PaymentStatus.CANCELLED, hold_status=None)
    clock.advance(minutes=1)
    active = create_payment(db, booking, now=clock())
    payments = RepositoryFactory.create_payment_repository(db)

    assert payments.get_active_for_booking(booking.id).id == active.id
    assert payments.status_counts(booking.id) == {"cancelled": 1, "authorized": 1}


def test_overdue_pending_bookings(db, clock):
    overdue = create_booking(db, now=clock(), response_deadline=clock() - timedelta(minutes=5))
    create_booking(db, now=clock(), response_deadline=clock() + timedelta(minutes=5))
    create_booking(
        db,
        now=clock(),
        status=BookingStatus.CONFIRMED,
        response_deadline=clock() - timedelta(minutes=5),
    )
    create_booking(db, now=clock())
    bookings = RepositoryFactory.create_booking_repository(db)

    assert [b.id for b in bookings.get_pending_past_deadline(clock(), 10)] == [overdue.id]


def test_expired_active_holds(db, clock):
    booking = create_booking(db, now=clock())
    expired = create_payment(db, booking, now=clock(), expires_in=timedelta(hours=-1))
    other = create_booking(db, now=clock())
    create_payment(db, other, now=clock())
    released = create_booking(db, now=clock())
    create_payment(
        db, released, now=clock(), expires_in=timedelta(hours=-1), hold_status=HoldStatus.RELEASED
    )
    holds = RepositoryFactory.create_hold_repository(db)

    found = holds.find_expired_active(clock(), 10)

    assert [hold.payment_id for hold in found] == [expired.id]


def test_drift_scan(db, clock):
    lagging = create_booking(db, now=clock())
    lagging_payment = create_payment(db, lagging, now=clock(), status=PaymentStatus.CAPTURED)
    captured_then_refunded = create_booking(db, now=clock())
    refunded_payment = create_payment(
        db,
        captured_then_refunded,
        now=clock(),
        status=PaymentStatus.REFUNDED,
        hold_status=HoldStatus.CAPTURED,
    )
    healthy = create_booking(db, now=clock())
    create_payment(db, healthy, now=clock())
    holds = RepositoryFactory.create_hold_repository(db)

    drifted = {hold.payment_id for hold in holds.find_with_payment_drift(10)}

    assert drifted == {lagging_payment.id, refunded_payment.id}


def test_status_breakdown(db, clock):
    create_booking(db, now=clock())
    create_booking(db, now=clock())
    create_booking(db, now=clock(), status=BookingStatus.REJECTED)
    bookings = RepositoryFactory.create_booking_repository(db)

    assert bookings.status_breakdown() == {"pending": 2, "rejected": 1}
