# backend/ridepay/services/booking_cancellation_service.py
"""
Rider-initiated booking cancellation.

Pending bookings are voided in full. Confirmed bookings go through the tiered
cancellation policy: the refundable share is refunded through the hold
service and the remainder is kept as a cancellation fee.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..constants.payment_status import (
    CAPTURED_PAYMENT_STATUSES,
    RELEASED_PAYMENT_STATUSES,
    BookingStatus,
    RefundReason,
)
from ..core.exceptions import CancellationNotAllowed, RecordNotFound
from ..core.timezone_utils import Clock, ensure_utc
from ..models.booking import RideBooking
from ..repositories.factory import RepositoryFactory
from ..utils.money import to_money
from .base import BaseService
from .cancellation_policy import hours_until, refund_split
from .payment_hold_service import PaymentHoldService

logger = logging.getLogger(__name__)

# Confirmed rides this far past departure are treated as completed.
COMPLETED_RIDE_GRACE_HOURS = 2.0

PENDING_CANCELLATION_REASON = "Pending booking can be cancelled with full refund"


@dataclass(frozen=True)
class CancellationEligibility:
    can_cancel: bool
    reason: str
    refund_amount: Optional[Decimal] = None
    cancellation_fee: Optional[Decimal] = None
    refund_percentage: Optional[int] = None
    hours_until_departure: Optional[float] = None


@dataclass(frozen=True)
class CancellationResult:
    booking_id: str
    booking_status: str
    refunded: bool
    refund_amount: Decimal
    cancellation_fee: Decimal
    reason: str
    already_cancelled: bool = False


class BookingCancellationService(BaseService):
    """Eligibility checks and cancellation for bookings cancelled by the rider."""

    def __init__(
        self,
        db: Session,
        hold_service: PaymentHoldService,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db)
        self.hold_service = hold_service
        self.clock = clock or hold_service.clock
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    def check_cancellation_eligibility(
        self, booking_id: str, user_id: Optional[str] = None
    ) -> CancellationEligibility:
        booking = self._get_booking(booking_id)
        return self._eligibility(booking, user_id, self.clock())

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, user_id: Optional[str] = None) -> CancellationResult:
        """
        Cancel a booking on the rider's behalf.

        A booking that is already cancelled returns what was recorded the first
        time, without touching the provider.

        Raises:
            RecordNotFound: Booking does not exist
            CancellationNotAllowed: Booking is not cancellable by this rider
        """
        booking = self._get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value and self._owned_by(booking, user_id):
            return self._stored_result(booking)

        now = self.clock()
        eligibility = self._eligibility(booking, user_id, now)
        if not eligibility.can_cancel:
            self.logger.info(
                "Cancellation refused",
                extra={"booking_id": booking_id, "reason": eligibility.reason},
            )
            raise CancellationNotAllowed(booking_id, eligibility.reason)

        refund_amount = eligibility.refund_amount or Decimal("0.00")
        fee = eligibility.cancellation_fee or Decimal("0.00")
        has_payment = bool(self.payment_repository.list_for_booking(booking_id))

        if not has_payment:
            refund_amount = fee = Decimal("0.00")
            self._mark_cancelled(booking_id, now)
        elif booking.status == BookingStatus.PENDING.value:
            released = self.hold_service.refund_hold(booking_id, RefundReason.PASSENGER_CANCELLED)
            refund_amount = released.amount
        elif refund_amount > 0:
            self.hold_service.refund_hold(
                booking_id, RefundReason.PASSENGER_CANCELLED, amount=refund_amount
            )
        else:
            self._retain_full_fee(booking_id, fee, now)

        self.booking_repository.refresh(booking)
        self.logger.info(
            "Booking cancelled by rider",
            extra={
                "booking_id": booking_id,
                "refund_amount": str(refund_amount),
                "cancellation_fee": str(fee),
            },
        )
        return CancellationResult(
            booking_id=booking_id,
            booking_status=booking.status,
            refunded=refund_amount > 0,
            refund_amount=refund_amount,
            cancellation_fee=fee,
            reason=eligibility.reason,
        )

    def _eligibility(
        self, booking: RideBooking, user_id: Optional[str], now: datetime
    ) -> CancellationEligibility:
        if not self._owned_by(booking, user_id):
            return CancellationEligibility(False, "You are not authorized to cancel this booking")

        status = booking.status
        if status == BookingStatus.CANCELLED.value:
            return CancellationEligibility(False, "Booking is already cancelled")
        if status == BookingStatus.TIMEOUT_CANCELLED.value:
            return CancellationEligibility(False, "Booking already timed out")
        if status == BookingStatus.REJECTED.value:
            return CancellationEligibility(False, "Booking was already rejected")
        if status == BookingStatus.COMPLETED.value:
            return CancellationEligibility(False, "Cannot cancel completed rides")

        departure = ensure_utc(booking.departure_time)
        hours = hours_until(departure, now) if departure is not None else None
        total = to_money(booking.total_amount)

        if status == BookingStatus.PENDING.value:
            return CancellationEligibility(
                can_cancel=True,
                reason=PENDING_CANCELLATION_REASON,
                refund_amount=total,
                cancellation_fee=Decimal("0.00"),
                refund_percentage=100,
                hours_until_departure=hours,
            )

        if status == BookingStatus.CONFIRMED.value and hours is not None:
            if hours <= -COMPLETED_RIDE_GRACE_HOURS:
                return CancellationEligibility(False, "Cannot cancel completed rides")
            outcome = refund_split(total, hours)
            return CancellationEligibility(
                can_cancel=True,
                reason=outcome.policy_reason,
                refund_amount=outcome.refund_amount,
                cancellation_fee=outcome.fee_amount,
                refund_percentage=outcome.refund_percentage,
                hours_until_departure=hours,
            )

        return CancellationEligibility(False, "Booking cannot be cancelled at this time")

    def _retain_full_fee(self, booking_id: str, fee: Decimal, now: datetime) -> None:
        payment = self.payment_repository.first_in_statuses(booking_id, CAPTURED_PAYMENT_STATUSES)
        with self.transaction():
            if payment is not None:
                self.payment_repository.update(
                    payment.id,
                    refund_reason=RefundReason.PASSENGER_CANCELLED.value,
                    refunded_amount=Decimal("0.00"),
                    cancellation_fee=fee,
                    updated_at=now,
                )
            self.booking_repository.update(
                booking_id, status=BookingStatus.CANCELLED.value, updated_at=now
            )

    def _mark_cancelled(self, booking_id: str, now: datetime) -> None:
        with self.transaction():
            self.booking_repository.update(
                booking_id, status=BookingStatus.CANCELLED.value, updated_at=now
            )

    def _stored_result(self, booking: RideBooking) -> CancellationResult:
        refund_amount = Decimal("0.00")
        fee = Decimal("0.00")
        reason = "Booking is already cancelled"
        for payment in self.payment_repository.list_for_booking(booking.id):
            if payment.status in RELEASED_PAYMENT_STATUSES or payment.cancellation_fee is not None:
                refund_amount = to_money(payment.refunded_amount or 0)
                fee = to_money(payment.cancellation_fee or 0)
                break
        return CancellationResult(
            booking_id=booking.id,
            booking_status=booking.status,
            refunded=refund_amount > 0,
            refund_amount=refund_amount,
            cancellation_fee=fee,
            reason=reason,
            already_cancelled=True,
        )

    @staticmethod
    def _owned_by(booking: RideBooking, user_id: Optional[str]) -> bool:
        return user_id is None or booking.passenger_id is None or booking.passenger_id == user_id

    def _get_booking(self, booking_id: str) -> RideBooking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking
