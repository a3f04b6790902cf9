# backend/ridepay/services/payment_reconciliation_service.py
"""
Re-derive hold and booking state from the payment record.

The PaymentRecord status is authoritative: it is the row written by the same
conditional update that wins a transition. If a HoldRecord or the booking did
not follow it, this pass moves them to where they should be. It never calls a
provider.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..constants.payment_status import (
    ACTIVE_PAYMENT_STATUSES,
    CAPTURED_PAYMENT_STATUSES,
    RELEASED_PAYMENT_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    HoldStatus,
    PaymentStatus,
    RefundReason,
    booking_status_for_reason,
    normalize_payment_status,
)
from ..core.exceptions import RecordNotFound
from ..core.timezone_utils import Clock, utc_now
from ..models.booking import RideBooking
from ..models.payment import PaymentRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_timeout_service import SweepResult

logger = logging.getLogger(__name__)

OPEN_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


@dataclass(frozen=True)
class ReconciliationReport:
    booking_id: str
    payment_id: str
    payment_status: str
    holds_updated: int
    booking_updated: bool

    @property
    def changed(self) -> bool:
        return self.holds_updated > 0 or self.booking_updated


class PaymentReconciliationService(BaseService):
    def __init__(self, db: Session, clock: Clock = utc_now):
        super().__init__(db)
        self.clock = clock
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.hold_repository = RepositoryFactory.create_hold_repository(db)

    @BaseService.measure_operation("reconcile_booking")
    def reconcile_booking(self, booking_id: str) -> ReconciliationReport:
        payments = self.payment_repository.list_for_booking(booking_id)
        if not payments:
            raise RecordNotFound(
                f"No payments found for booking {booking_id}", booking_id=booking_id, statuses={}
            )
        payment = self._authoritative(payments)
        status = normalize_payment_status(payment.status) or payment.status
        now = self.clock()

        with self.transaction():
            holds_updated = self._align_holds(payment, status, now)
            booking_updated = self._align_booking(booking_id, payment, status, now)

        report = ReconciliationReport(
            booking_id=booking_id,
            payment_id=payment.id,
            payment_status=status,
            holds_updated=holds_updated,
            booking_updated=booking_updated,
        )
        if report.changed:
            self.logger.warning(
                "Reconciled drifted payment state",
                extra={
                    "booking_id": booking_id,
                    "payment_id": payment.id,
                    "payment_status": status,
                    "holds_updated": holds_updated,
                    "booking_updated": booking_updated,
                },
            )
        return report

    @BaseService.measure_operation("reconcile_drift")
    def reconcile_drift(self, limit: int = 25) -> SweepResult:
        """Find holds that lag their payment and reconcile each affected booking once."""
        booking_ids: List[str] = []
        for hold in self.hold_repository.find_with_payment_drift(limit):
            if hold.booking_id not in booking_ids:
                booking_ids.append(hold.booking_id)

        result = SweepResult()
        for booking_id in booking_ids:
            try:
                self.reconcile_booking(booking_id)
            except Exception:
                self.db.rollback()
                result.errors += 1
                prometheus_metrics.record_sweep_item("reconciliation", "error")
                self.logger.exception(
                    "Reconciliation failed", extra={"booking_id": booking_id}
                )
            else:
                result.processed += 1
                prometheus_metrics.record_sweep_item("reconciliation", "processed")
        return result

    def _align_holds(self, payment: PaymentRecord, status: str, now: datetime) -> int:
        target = self._hold_status_for(payment, status)
        if target is None:
            return 0
        updated = 0
        for hold in self.hold_repository.list_for_payment(payment.id):
            if hold.status == target.value:
                continue
            if self.hold_repository.update_if_status(
                hold.id,
                [HoldStatus.ACTIVE.value, HoldStatus.CAPTURED.value],
                status=target.value,
                updated_at=now,
            ):
                updated += 1
        return updated

    def _align_booking(
        self, booking_id: str, payment: PaymentRecord, status: str, now: datetime
    ) -> bool:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            return False

        values = {}
        expected_payment_status = self._booking_payment_status_for(payment, status)
        if expected_payment_status and booking.payment_status != expected_payment_status:
            values["payment_status"] = expected_payment_status

        expected_status = self._booking_status_for(booking, payment, status)
        if expected_status and booking.status != expected_status:
            values["status"] = expected_status

        if not values:
            return False
        self.booking_repository.update(booking_id, updated_at=now, **values)
        return True

    @staticmethod
    def _authoritative(payments: List[PaymentRecord]) -> PaymentRecord:
        for statuses in (ACTIVE_PAYMENT_STATUSES, CAPTURED_PAYMENT_STATUSES, RELEASED_PAYMENT_STATUSES):
            for payment in payments:
                if payment.status in statuses:
                    return payment
        return payments[0]

    @staticmethod
    def _hold_status_for(payment: PaymentRecord, status: str) -> Optional[HoldStatus]:
        if status == PaymentStatus.CAPTURED.value:
            return HoldStatus.CAPTURED
        if status == PaymentStatus.REFUNDED.value:
            return HoldStatus.REFUNDED
        if status == PaymentStatus.CANCELLED.value:
            return HoldStatus.RELEASED
        return None

    @staticmethod
    def _booking_payment_status_for(payment: PaymentRecord, status: str) -> Optional[str]:
        if status in ACTIVE_PAYMENT_STATUSES:
            return status
        if status == PaymentStatus.CAPTURED.value:
            return BookingPaymentStatus.CAPTURED.value
        if status == PaymentStatus.CANCELLED.value:
            return BookingPaymentStatus.CANCELLED.value
        if status == PaymentStatus.REFUNDED.value:
            if payment.refunded_amount is not None and payment.refunded_amount < payment.amount:
                return BookingPaymentStatus.PARTIALLY_REFUNDED.value
            return BookingPaymentStatus.REFUNDED.value
        return None

    @staticmethod
    def _booking_status_for(
        booking: RideBooking, payment: PaymentRecord, status: str
    ) -> Optional[str]:
        if status == PaymentStatus.CAPTURED.value and booking.status == BookingStatus.PENDING.value:
            return BookingStatus.CONFIRMED.value
        if status in (PaymentStatus.REFUNDED.value, PaymentStatus.CANCELLED.value):
            if booking.status not in OPEN_BOOKING_STATUSES:
                return None
            try:
                reason = RefundReason(payment.refund_reason)
            except ValueError:
                return BookingStatus.CANCELLED.value
            return booking_status_for_reason(reason)
        return None
