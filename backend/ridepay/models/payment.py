"""
Payment and hold models.

A PaymentRecord is one attempted payment against a booking; the HoldRecord
tracks the reservation of funds so the expiry sweep can scan a single narrow
index instead of every payment state.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ridepay.constants.payment_status import HoldStatus, PaymentStatus
from ridepay.database import Base


class PaymentRecord(Base):
    """One row per attempted payment for a booking."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="cad")
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Stripe: PaymentIntent id in both. PayPal: order id / authorization id.
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    authorization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Provider capture reference"
    )
    refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentStatus.CREATED.value, index=True
    )
    refund_reason: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    cancellation_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_payments_booking_status", "booking_id", "status"),)

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(id={self.id}, booking_id={self.booking_id}, "
            f"provider={self.provider}, status={self.status}, amount={self.amount})>"
        )


class HoldRecord(Base):
    """Reservation of funds backing a PaymentRecord."""

    __tablename__ = "payment_holds"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("ride_bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    hold_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=HoldStatus.ACTIVE.value)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_payment_holds_status_expiry", "status", "hold_expires_at"),)

    def __repr__(self) -> str:
        return (
            f"<HoldRecord(id={self.id}, payment_id={self.payment_id}, "
            f"status={self.status}, expires={self.hold_expires_at})>"
        )
