"""Status vocabularies for bookings, payments and holds, plus normalization helpers."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class BookingStatus(str, Enum):
    """Ride booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting driver response
    CONFIRMED = "confirmed"  # Driver accepted, funds captured
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    TIMEOUT_CANCELLED = "timeout_cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """PaymentRecord state machine."""

    CREATED = "created"
    REQUIRES_ACTION = "requires_action"  # Order created, explicit authorize pending
    AUTHORIZED = "authorized"
    REQUIRES_CAPTURE = "requires_capture"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    # Legacy synonyms still present in older rows
    COMPLETED = "completed"
    VOIDED = "voided"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    CAPTURED = "captured"
    RELEASED = "released"
    REFUNDED = "refunded"


class BookingPaymentStatus(str, Enum):
    """Denormalized payment summary stamped on the booking row."""

    AUTHORIZED = "authorized"
    REQUIRES_ACTION = "requires_action"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELLED = "cancelled"


class RefundReason(str, Enum):
    DRIVER_REJECTED = "driver_rejected"
    TIMEOUT = "timeout"
    PASSENGER_CANCELLED = "passenger_cancelled"


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


ACTIVE_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.AUTHORIZED.value,
        PaymentStatus.REQUIRES_CAPTURE.value,
        PaymentStatus.REQUIRES_ACTION.value,
    }
)
CAPTURED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CAPTURED.value, PaymentStatus.COMPLETED.value}
)
RELEASED_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.REFUNDED.value,
        PaymentStatus.CANCELLED.value,
        PaymentStatus.VOIDED.value,
    }
)
CAPTURABLE_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value}
)

# Booking statuses a release for each reason may still move.
_RELEASABLE_BOOKING_STATUSES = {
    RefundReason.TIMEOUT: frozenset(
        {BookingStatus.PENDING.value, BookingStatus.TIMEOUT_CANCELLED.value}
    ),
    RefundReason.DRIVER_REJECTED: frozenset(
        {BookingStatus.PENDING.value, BookingStatus.REJECTED.value}
    ),
    RefundReason.PASSENGER_CANCELLED: frozenset(
        {
            BookingStatus.PENDING.value,
            BookingStatus.CONFIRMED.value,
            BookingStatus.CANCELLED.value,
        }
    ),
}

_LEGACY_PAYMENT_STATUS = {
    PaymentStatus.COMPLETED.value: PaymentStatus.CAPTURED.value,
    PaymentStatus.VOIDED.value: PaymentStatus.CANCELLED.value,
}


def normalize_payment_status(status: Optional[str]) -> Optional[str]:
    """Map legacy payment statuses onto their current equivalents."""
    if status is None:
        return None
    return _LEGACY_PAYMENT_STATUS.get(status, status)


def booking_status_for_reason(reason: RefundReason) -> str:
    if reason == RefundReason.TIMEOUT:
        return BookingStatus.TIMEOUT_CANCELLED.value
    return BookingStatus.CANCELLED.value


def releasable_booking_statuses(reason: RefundReason) -> frozenset:
    return _RELEASABLE_BOOKING_STATUSES[reason]


def refund_reason_for_booking_status(status: Optional[str]) -> RefundReason:
    """Infer why an orphaned hold is being released from where its booking ended up."""
    if status == BookingStatus.CANCELLED.value:
        return RefundReason.PASSENGER_CANCELLED
    if status == BookingStatus.REJECTED.value:
        return RefundReason.DRIVER_REJECTED
    return RefundReason.TIMEOUT
