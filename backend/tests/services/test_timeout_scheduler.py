"""
Tests for the in-process timeout scheduler.
"""

import threading
from unittest.mock import patch

from tests.factories.booking_builders import PASSENGER_ID, create_booking, create_payment

from ridepay.constants.payment_status import PaymentStatus
from ridepay.services.booking_timeout_service import BookingTimeoutService, SweepResult
from ridepay.services.payment_hold_service import PaymentHoldService
from ridepay.services.payment_reconciliation_service import PaymentReconciliationService
from ridepay.services.timeout_scheduler import TimeoutScheduler


def _scheduler(session_factory, providers, clock, **kwargs) -> TimeoutScheduler:
    return TimeoutScheduler(session_factory, providers, clock=clock, interval_seconds=60, **kwargs)


def test_run_once_with_nothing_due(session_factory, providers, clock):
    assert _scheduler(session_factory, providers, clock).run_once() == SweepResult()


def test_run_once_reconciles_drift(db, session_factory, providers, clock):
    booking = create_booking(db, now=clock())
    create_payment(db, booking, now=clock(), status=PaymentStatus.CAPTURED)

    result = _scheduler(session_factory, providers, clock, reconciliation_enabled=True).run_once()

    assert result.processed == 1
    db.expire_all()
    db.refresh(booking)
    assert booking.status == "confirmed"


def test_reconciliation_can_be_disabled(session_factory, providers, clock):
    scheduler = _scheduler(session_factory, providers, clock, reconciliation_enabled=False)

    with patch.object(PaymentReconciliationService, "reconcile_drift") as reconcile:
        scheduler.run_once()

    reconcile.assert_not_called()


def test_failed_sweep_is_counted_and_next_sweep_runs(db, session_factory, providers, clock):
    booking = create_booking(db, now=clock())
    PaymentHoldService(db, providers, clock=clock).create_hold(
        "40", "pm_card_visa", booking.id, PASSENGER_ID
    )
    clock.advance(hours=13)

    with patch.object(
        BookingTimeoutService,
        "sweep_response_deadlines",
        side_effect=RuntimeError("database went away"),
    ):
        result = _scheduler(session_factory, providers, clock).run_once()

    assert result.errors == 1
    # The expired-hold sweep still released the hold.
    assert result.processed == 1


def test_start_and_stop(session_factory, providers, clock):
    scheduler = _scheduler(session_factory, providers, clock)
    ticked = threading.Event()

    def tick():
        ticked.set()
        return SweepResult()

    with patch.object(scheduler, "run_once", side_effect=tick):
        assert scheduler.start() is True
        assert ticked.wait(5)
        assert scheduler.is_running is True
        assert scheduler.start() is False
        scheduler.stop()

    assert scheduler.is_running is False


def test_interval_and_batch_have_floors(session_factory, providers, clock):
    scheduler = TimeoutScheduler(
        session_factory, providers, clock=clock, interval_seconds=0.01, batch_size=-5
    )

    assert scheduler.interval_seconds == 1.0
    assert scheduler.batch_size == 1
