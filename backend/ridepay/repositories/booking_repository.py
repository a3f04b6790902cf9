"""Data access for ride bookings."""

from datetime import datetime
import logging
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants.payment_status import BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import RideBooking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[RideBooking]):
    """Booking queries used by the hold lifecycle and the timeout sweep."""

    def __init__(self, db: Session):
        super().__init__(db, RideBooking)

    def get_pending_past_deadline(self, now: datetime, limit: int) -> List[RideBooking]:
        """Pending bookings whose driver-response deadline has passed, oldest deadline first."""
        try:
            return (
                self.db.query(RideBooking)
                .filter(
                    RideBooking.status == BookingStatus.PENDING.value,
                    RideBooking.response_deadline.isnot(None),
                    RideBooking.response_deadline <= now,
                )
                .order_by(RideBooking.response_deadline.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load overdue pending bookings: {str(e)}")
            raise RepositoryException(f"Failed to load overdue pending bookings: {str(e)}")

    def count_by_status(self, status: str) -> int:
        return self.count(status=status)

    def count_status_updated_since(self, status: str, since: datetime) -> int:
        try:
            return (
                self.db.query(func.count(RideBooking.id))
                .filter(RideBooking.status == status, RideBooking.updated_at >= since)
                .scalar()
                or 0
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to count recent {status} bookings: {str(e)}")
            raise RepositoryException(f"Failed to count bookings: {str(e)}")

    def status_breakdown(self) -> Dict[str, int]:
        try:
            rows = (
                self.db.query(RideBooking.status, func.count(RideBooking.id))
                .group_by(RideBooking.status)
                .all()
            )
            return {status: int(count) for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to aggregate booking statuses: {str(e)}")
            raise RepositoryException(f"Failed to aggregate booking statuses: {str(e)}")
