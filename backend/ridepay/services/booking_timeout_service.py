# backend/ridepay/services/booking_timeout_service.py
"""
Booking timeout sweeps.

Two sweeps release money nobody is going to capture:

- response deadlines: pending bookings the driver never answered are marked
  ``timeout_cancelled`` and their hold is released
- expired holds: any hold still active past its expiry is released, with the
  reason inferred from where the booking ended up

Each sweep is bounded by a batch size and processes items one at a time. An
item that fails is logged and counted, and the sweep moves on.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..constants.payment_status import (
    ACTIVE_PAYMENT_STATUSES,
    CAPTURED_PAYMENT_STATUSES,
    BookingStatus,
    HoldStatus,
    PaymentStatus,
    RefundReason,
    normalize_payment_status,
    refund_reason_for_booking_status,
)
from ..core.config import settings
from ..core.exceptions import BusinessRuleException, ReconciliationRequired, RecordNotFound
from ..core.timezone_utils import Clock, ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .payment_hold_service import PaymentHoldService, RefundResult

logger = logging.getLogger(__name__)

RECENT_TIMEOUT_WINDOW = timedelta(hours=24)


@dataclass
class SweepResult:
    processed: int = 0
    errors: int = 0
    reconciliation_required: int = 0

    def __add__(self, other: "SweepResult") -> "SweepResult":
        return SweepResult(
            processed=self.processed + other.processed,
            errors=self.errors + other.errors,
            reconciliation_required=self.reconciliation_required + other.reconciliation_required,
        )


@dataclass(frozen=True)
class TimeoutStats:
    total_timeouts: int
    recent_timeouts: int
    pending_bookings: int


class BookingTimeoutService(BaseService):
    """Session-bound timeout processing; the scheduler creates one per tick."""

    def __init__(
        self,
        db: Session,
        hold_service: PaymentHoldService,
        clock: Optional[Clock] = None,
        batch_size: Optional[int] = None,
    ):
        super().__init__(db)
        self.hold_service = hold_service
        self.clock = clock or hold_service.clock
        self.batch_size = batch_size or settings.timeout_sweep_batch_size
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.hold_repository = RepositoryFactory.create_hold_repository(db)

    @BaseService.measure_operation("sweep_response_deadlines")
    def sweep_response_deadlines(self, limit: Optional[int] = None) -> SweepResult:
        """Time out pending bookings whose driver-response deadline has passed."""
        now = self.clock()
        booking_ids = [
            booking.id
            for booking in self.booking_repository.get_pending_past_deadline(
                now, limit or self.batch_size
            )
        ]
        result = SweepResult()
        for booking_id in booking_ids:
            self._run_item(result, "response_deadline", booking_id, None, self._time_out_booking, now)

        if booking_ids:
            self.logger.info(
                "Response deadline sweep finished",
                extra={
                    "processed": result.processed,
                    "errors": result.errors,
                    "reconciliation_required": result.reconciliation_required,
                },
            )
        return result

    @BaseService.measure_operation("sweep_expired_holds")
    def sweep_expired_holds(self, limit: Optional[int] = None) -> SweepResult:
        """Release active holds past their expiry, oldest first."""
        now = self.clock()
        expired: List[Tuple[str, str]] = [
            (hold.id, hold.booking_id)
            for hold in self.hold_repository.find_expired_active(now, limit or self.batch_size)
        ]
        result = SweepResult()
        for hold_id, booking_id in expired:
            self._run_item(result, "expired_hold", booking_id, hold_id, self._release_expired_hold, now)

        if expired:
            self.logger.info(
                "Expired hold sweep finished",
                extra={
                    "processed": result.processed,
                    "errors": result.errors,
                    "reconciliation_required": result.reconciliation_required,
                },
            )
        return result

    def schedule_booking_timeout(self, booking_id: str, timeout_hours: Optional[float] = None) -> datetime:
        """Set (or move) a booking's driver-response deadline."""
        hours = settings.hold_authorization_window_hours if timeout_hours is None else timeout_hours
        now = self.clock()
        deadline = now + timedelta(hours=hours)
        with self.transaction():
            booking = self.booking_repository.update(
                booking_id, response_deadline=deadline, updated_at=now
            )
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        self.logger.info(
            "Scheduled booking timeout",
            extra={"booking_id": booking_id, "response_deadline": deadline.isoformat()},
        )
        return deadline

    def cancel_booking_timeout(self, booking_id: str) -> None:
        """Clear the response deadline once the driver has answered."""
        with self.transaction():
            booking = self.booking_repository.update(
                booking_id, response_deadline=None, updated_at=self.clock()
            )
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)

    def is_within_response_window(self, booking_id: str) -> bool:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None or booking.status != BookingStatus.PENDING.value:
            return False
        deadline = ensure_utc(booking.response_deadline)
        if deadline is None:
            return True
        return self.clock() < deadline

    @BaseService.measure_operation("force_timeout_booking")
    def force_timeout_booking(self, booking_id: str) -> Optional[RefundResult]:
        """Time out one booking immediately, regardless of its deadline."""
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        if booking.status not in (BookingStatus.PENDING.value, BookingStatus.TIMEOUT_CANCELLED.value):
            raise BusinessRuleException(
                f"Cannot time out a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )
        return self._time_out_booking(booking_id, None, self.clock())

    def get_timeout_stats(self) -> TimeoutStats:
        now = self.clock()
        timeout_status = BookingStatus.TIMEOUT_CANCELLED.value
        return TimeoutStats(
            total_timeouts=self.booking_repository.count_by_status(timeout_status),
            recent_timeouts=self.booking_repository.count_status_updated_since(
                timeout_status, now - RECENT_TIMEOUT_WINDOW
            ),
            pending_bookings=self.booking_repository.count_by_status(BookingStatus.PENDING.value),
        )

    # ----------------------------------------------------------------- items

    def _time_out_booking(
        self, booking_id: str, hold_id: Optional[str], now: datetime
    ) -> Optional[RefundResult]:
        with self.transaction():
            timed_out = self.booking_repository.update_if_status(
                booking_id,
                [BookingStatus.PENDING.value],
                status=BookingStatus.TIMEOUT_CANCELLED.value,
                updated_at=now,
            )
        if not timed_out:
            booking = self.booking_repository.get_by_id(booking_id)
            if booking is not None:
                self.booking_repository.refresh(booking)
            if booking is None or booking.status != BookingStatus.TIMEOUT_CANCELLED.value:
                self.logger.info(
                    "Booking left pending before its deadline was processed; skipping",
                    extra={"booking_id": booking_id, "status": booking.status if booking else None},
                )
                return None
        if not self.payment_repository.list_for_booking(booking_id):
            return None
        return self.hold_service.refund_hold(booking_id, RefundReason.TIMEOUT)

    def _release_expired_hold(
        self, booking_id: str, hold_id: Optional[str], now: datetime
    ) -> Optional[RefundResult]:
        hold = self.hold_repository.get_by_id(hold_id) if hold_id else None
        if hold is None or hold.status != HoldStatus.ACTIVE.value:
            return None
        payment = self.payment_repository.get_by_id(hold.payment_id)
        if payment is None or payment.status not in ACTIVE_PAYMENT_STATUSES:
            # Payment was settled earlier but this hold row never followed it.
            self._settle_hold_row(hold.id, payment.status if payment else None, now)
            return None

        active = self.payment_repository.get_active_for_booking(booking_id)
        if active is None or active.id != payment.id:
            self.logger.warning(
                "Expired hold does not back the booking's active payment; skipping",
                extra={
                    "booking_id": booking_id,
                    "hold_id": hold.id,
                    "payment_id": payment.id,
                    "active_payment_id": active.id if active else None,
                },
            )
            return None

        booking = self.booking_repository.get_by_id(booking_id)
        reason = refund_reason_for_booking_status(booking.status if booking else None)
        return self.hold_service.refund_hold(booking_id, reason)

    def _settle_hold_row(self, hold_id: str, payment_status: Optional[str], now: datetime) -> None:
        status = normalize_payment_status(payment_status)
        if status in CAPTURED_PAYMENT_STATUSES:
            target = HoldStatus.CAPTURED
        elif status == PaymentStatus.REFUNDED.value:
            target = HoldStatus.REFUNDED
        else:
            target = HoldStatus.RELEASED
        with self.transaction():
            self.hold_repository.update_if_status(
                hold_id, [HoldStatus.ACTIVE.value], status=target.value, updated_at=now
            )
        self.logger.info(
            "Settled stale hold row",
            extra={"hold_id": hold_id, "payment_status": payment_status, "hold_status": target.value},
        )

    def _run_item(
        self,
        result: SweepResult,
        sweep: str,
        booking_id: str,
        hold_id: Optional[str],
        handler: Callable[[str, Optional[str], datetime], Optional[RefundResult]],
        now: datetime,
    ) -> None:
        try:
            handler(booking_id, hold_id, now)
        except ReconciliationRequired as exc:
            result.reconciliation_required += 1
            prometheus_metrics.record_sweep_item(sweep, "reconciliation_required")
            self.logger.error(
                "Sweep item needs reconciliation",
                extra={"sweep": sweep, "booking_id": booking_id, "hold_id": hold_id, **exc.details},
            )
        except Exception as exc:
            self.db.rollback()
            result.errors += 1
            prometheus_metrics.record_sweep_item(sweep, "error")
            self.logger.exception(
                "Sweep item failed",
                extra={
                    "sweep": sweep,
                    "booking_id": booking_id,
                    "hold_id": hold_id,
                    "error_type": type(exc).__name__,
                },
            )
        else:
            result.processed += 1
            prometheus_metrics.record_sweep_item(sweep, "processed")
