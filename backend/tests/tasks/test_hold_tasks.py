"""
Tests for the Celery hold-maintenance tasks and the beat schedule.

Tasks are called directly; ``SessionLocal`` and the provider registry are
patched to the in-memory database and the fake providers.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from tests.factories.booking_builders import create_booking, create_payment

from ridepay.constants.payment_status import PaymentStatus
from ridepay.core.config import settings
from ridepay.core.timezone_utils import utc_now
from ridepay.services.booking_timeout_service import BookingTimeoutService
from ridepay.tasks.beat_schedule import get_beat_schedule
from ridepay.tasks.hold_tasks import process_booking_timeouts, reconcile_payment_holds


@pytest.fixture
def task_env(session_factory, providers):
    with patch("ridepay.tasks.hold_tasks.SessionLocal", session_factory), patch(
        "ridepay.tasks.hold_tasks.build_provider_registry", return_value=providers
    ):
        yield


class TestProcessBookingTimeouts:
    def test_times_out_overdue_booking(self, task_env, db):
        requested_at = utc_now() - timedelta(hours=13)
        booking = create_booking(
            db, now=requested_at, response_deadline=requested_at + timedelta(hours=12)
        )

        result = process_booking_timeouts(limit=10)

        assert result["response_deadlines"] == {
            "processed": 1,
            "errors": 0,
            "reconciliation_required": 0,
        }
        assert result["expired_holds"]["processed"] == 0
        assert "processed_at" in result
        db.expire_all()
        db.refresh(booking)
        assert booking.status == "timeout_cancelled"

    def test_nothing_due(self, task_env):
        result = process_booking_timeouts()

        assert result["response_deadlines"]["processed"] == 0
        assert result["expired_holds"]["processed"] == 0

    def test_failed_run_is_retried(self, task_env):
        with patch.object(
            BookingTimeoutService,
            "sweep_response_deadlines",
            side_effect=RuntimeError("database unavailable"),
        ):
            with pytest.raises(RuntimeError):
                process_booking_timeouts()


class TestReconcilePaymentHolds:
    def test_reconciles_drifted_booking(self, task_env, db, clock):
        booking = create_booking(db, now=clock())
        create_payment(db, booking, now=clock(), status=PaymentStatus.CAPTURED)

        result = reconcile_payment_holds()

        assert result["reconciled"] == 1
        assert result["errors"] == 0
        db.expire_all()
        db.refresh(booking)
        assert booking.status == "confirmed"


class TestBeatSchedule:
    def test_production_schedule(self):
        schedule = get_beat_schedule("production")

        entry = schedule["process-booking-timeouts"]
        assert entry["task"] == "ridepay.tasks.hold_tasks.process_booking_timeouts"
        assert entry["schedule"] == timedelta(seconds=settings.timeout_sweep_interval_seconds)
        assert "reconcile-payment-holds" in schedule

    def test_development_runs_every_minute(self):
        schedule = get_beat_schedule("development")

        assert schedule["process-booking-timeouts"]["schedule"] == timedelta(minutes=1)

    def test_reconciliation_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "reconciliation_enabled", False)

        assert "reconcile-payment-holds" not in get_beat_schedule("production")
