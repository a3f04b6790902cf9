"""
Ride booking model.

Bookings are owned by the marketplace. The payment-hold core only writes the
status, payment_status, response deadline and authorization stamp fields.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import ulid
from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ridepay.constants.payment_status import BookingStatus
from ridepay.database import Base


class RideBooking(Base):
    """A rider's request for a seat on a ride."""

    __tablename__ = "ride_bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    passenger_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    response_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_authorized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'rejected', "
            "'timeout_cancelled', 'completed')",
            name="ck_ride_bookings_status",
        ),
        Index("ix_ride_bookings_status_deadline", "status", "response_deadline"),
    )

    def __repr__(self) -> str:
        return (
            f"<RideBooking(id={self.id}, status={self.status}, "
            f"payment_status={self.payment_status}, departure={self.departure_time})>"
        )
