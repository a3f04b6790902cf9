# backend/ridepay/services/driver_response_service.py
"""
Driver Response Service

Turns a driver's accept/reject decision on a pending ride request into the
matching payment transition.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..constants.payment_status import BookingStatus, RefundReason
from ..core.exceptions import BusinessRuleException, DomainException, HoldExpired, RecordNotFound
from ..core.timezone_utils import Clock, ensure_utc
from ..models.booking import RideBooking
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .payment_hold_service import CaptureResult, PaymentHoldService, RefundResult

logger = logging.getLogger(__name__)


class DriverResponseService(BaseService):
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

    @BaseService.measure_operation("driver_accept")
    def accept(self, booking_id: str) -> CaptureResult:
        """
        Accept a ride request and capture the rider's hold.

        If the hold has lapsed the booking is released as a timeout and
        HoldExpired is raised to the caller.
        """
        booking = self._get_booking(booking_id)
        if booking.status == BookingStatus.CONFIRMED.value:
            return self.hold_service.capture_hold(booking_id)
        if booking.status != BookingStatus.PENDING.value:
            raise BusinessRuleException(
                f"Cannot accept a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )

        try:
            deadline = ensure_utc(booking.response_deadline)
            if deadline is not None and self.clock() >= deadline:
                active = self.payment_repository.get_active_for_booking(booking_id)
                raise HoldExpired(booking_id, active.id if active else None, deadline.isoformat())
            result = self.hold_service.capture_hold(booking_id)
        except HoldExpired:
            self.logger.warning(
                "Response window closed before capture; releasing booking as timed out",
                extra={"booking_id": booking_id},
            )
            self._release_timed_out(booking_id)
            raise

        self.logger.info(
            "Driver accepted booking",
            extra={"booking_id": booking_id, "payment_id": result.payment_id},
        )
        return result

    @BaseService.measure_operation("driver_reject")
    def reject(self, booking_id: str) -> Optional[RefundResult]:
        """Reject a ride request and release the hold. Returns None when no payment exists."""
        booking = self._get_booking(booking_id)
        if booking.status not in (BookingStatus.PENDING.value, BookingStatus.REJECTED.value):
            raise BusinessRuleException(
                f"Cannot reject a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )

        now = self.clock()
        with self.transaction():
            rejected = self.booking_repository.update_if_status(
                booking_id,
                [BookingStatus.PENDING.value],
                status=BookingStatus.REJECTED.value,
                response_deadline=None,
                updated_at=now,
            )
        if not rejected:
            self.booking_repository.refresh(booking)
            if booking.status != BookingStatus.REJECTED.value:
                raise BusinessRuleException(
                    f"Cannot reject a {booking.status} booking",
                    code="BOOKING_NOT_PENDING",
                    details={"booking_id": booking_id, "status": booking.status},
                )

        if not self.payment_repository.list_for_booking(booking_id):
            self.logger.info("Driver rejected booking without payment", extra={"booking_id": booking_id})
            return None

        result = self.hold_service.refund_hold(booking_id, RefundReason.DRIVER_REJECTED)
        self.logger.info(
            "Driver rejected booking",
            extra={"booking_id": booking_id, "payment_id": result.payment_id, "action": result.action},
        )
        return result

    def _release_timed_out(self, booking_id: str) -> None:
        if not self.payment_repository.list_for_booking(booking_id):
            with self.transaction():
                self.booking_repository.update_if_status(
                    booking_id,
                    [BookingStatus.PENDING.value],
                    status=BookingStatus.TIMEOUT_CANCELLED.value,
                    updated_at=self.clock(),
                )
            return
        try:
            self.hold_service.refund_hold(booking_id, RefundReason.TIMEOUT)
        except DomainException:
            self.logger.exception(
                "Release after expired capture failed; left for the timeout sweep",
                extra={"booking_id": booking_id},
            )

    def _get_booking(self, booking_id: str) -> RideBooking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking
