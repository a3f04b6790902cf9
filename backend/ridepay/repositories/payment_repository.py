"""
Payment Repository

Data access for PaymentRecord and HoldRecord rows. Both are always read and
written together by the hold service, so they share one repository module.
"""

from collections import Counter
from datetime import datetime
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants.payment_status import (
    ACTIVE_PAYMENT_STATUSES,
    RELEASED_PAYMENT_STATUSES,
    HoldStatus,
)
from ..core.exceptions import RepositoryException
from ..models.payment import HoldRecord, PaymentRecord
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentRecord]):
    """
    Repository for payment records.

    Rows are returned newest first so callers that want "the current payment"
    can take the first match.
    """

    def __init__(self, db: Session):
        super().__init__(db, PaymentRecord)

    def list_for_booking(self, booking_id: str) -> List[PaymentRecord]:
        """Return all payment records for a booking ordered newest first."""
        try:
            return (
                self.db.query(PaymentRecord)
                .filter(PaymentRecord.booking_id == booking_id)
                .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payments for booking: {str(e)}")
            raise RepositoryException(f"Failed to get payments for booking: {str(e)}")

    def first_in_statuses(
        self, booking_id: str, statuses: Iterable[str]
    ) -> Optional[PaymentRecord]:
        wanted = set(statuses)
        for payment in self.list_for_booking(booking_id):
            if payment.status in wanted:
                return payment
        return None

    def get_active_for_booking(self, booking_id: str) -> Optional[PaymentRecord]:
        return self.first_in_statuses(booking_id, ACTIVE_PAYMENT_STATUSES)

    def status_counts(self, booking_id: str) -> Dict[str, int]:
        """Per-status breakdown used in operator-facing not-found errors."""
        return dict(Counter(payment.status for payment in self.list_for_booking(booking_id)))


class HoldRepository(BaseRepository[HoldRecord]):
    """Repository for fund reservations backing payment records."""

    def __init__(self, db: Session):
        super().__init__(db, HoldRecord)

    def list_for_payment(self, payment_id: str) -> List[HoldRecord]:
        try:
            return (
                self.db.query(HoldRecord)
                .filter(HoldRecord.payment_id == payment_id)
                .order_by(HoldRecord.created_at.desc(), HoldRecord.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get holds for payment: {str(e)}")
            raise RepositoryException(f"Failed to get holds for payment: {str(e)}")

    def get_active_for_booking(self, booking_id: str) -> List[HoldRecord]:
        return self.find_by(booking_id=booking_id, status=HoldStatus.ACTIVE.value)

    def find_expired_active(self, now: datetime, limit: int) -> List[HoldRecord]:
        """Active holds past expiry, oldest expiry first (served by the status/expiry index)."""
        try:
            return (
                self.db.query(HoldRecord)
                .filter(
                    HoldRecord.status == HoldStatus.ACTIVE.value,
                    HoldRecord.hold_expires_at < now,
                )
                .order_by(HoldRecord.hold_expires_at.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load expired holds: {str(e)}")
            raise RepositoryException(f"Failed to load expired holds: {str(e)}")

    def find_with_payment_drift(self, limit: int) -> List[HoldRecord]:
        """
        Holds still marked active or captured whose payment has already moved on.

        These are left behind when a transition committed the payment row but a
        later write was lost (for example a row restored from an older backup).
        """
        try:
            return (
                self.db.query(HoldRecord)
                .join(PaymentRecord, PaymentRecord.id == HoldRecord.payment_id)
                .filter(
                    (
                        (HoldRecord.status == HoldStatus.ACTIVE.value)
                        & PaymentRecord.status.notin_(sorted(ACTIVE_PAYMENT_STATUSES))
                    )
                    | (
                        (HoldRecord.status == HoldStatus.CAPTURED.value)
                        & PaymentRecord.status.in_(sorted(RELEASED_PAYMENT_STATUSES))
                    )
                )
                .order_by(HoldRecord.hold_expires_at.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to scan hold/payment drift: {str(e)}")
            raise RepositoryException(f"Failed to scan hold/payment drift: {str(e)}")
