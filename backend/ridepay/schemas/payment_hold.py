"""Request/response schemas for the payment-hold endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from ..constants.payment_status import PaymentProvider
from ..services.booking_cancellation_service import CancellationEligibility, CancellationResult
from ..services.booking_timeout_service import TimeoutStats
from ..services.payment_hold_service import CaptureResult, HoldDetails, HoldResult, RefundResult
from .base import Money, StandardizedModel, StrictModel


class CreatePaymentHoldRequest(StrictModel):
    amount: Money = Field(..., description="Hold amount in major units, e.g. 42.50")
    payment_method: str = Field(
        ..., min_length=1, description="Stripe payment method id, or 'paypal'"
    )
    user_id: str = Field(..., min_length=1)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    provider: Optional[PaymentProvider] = None


class CancelBookingRequest(StrictModel):
    user_id: Optional[str] = None


class PaymentHoldResponse(StandardizedModel):
    booking_id: str
    payment_id: str
    provider: str
    status: str
    amount: Money
    currency: str
    expires_at: datetime
    requires_action: bool

    @classmethod
    def from_result(cls, result: HoldResult) -> "PaymentHoldResponse":
        return cls(
            booking_id=result.booking_id,
            payment_id=result.payment_id,
            provider=result.provider,
            status=result.status,
            amount=result.amount,
            currency=result.currency,
            expires_at=result.expires_at,
            requires_action=result.status == "requires_action",
        )


class HoldDetailsResponse(StandardizedModel):
    booking_id: str
    payment_id: str
    provider: str
    payment_status: str
    amount: Money
    currency: str
    expires_at: Optional[datetime] = None
    hold_status: Optional[str] = None
    captured_at: Optional[datetime] = None
    refunded_amount: Optional[Money] = None
    is_valid: bool

    @classmethod
    def from_details(cls, details: HoldDetails) -> "HoldDetailsResponse":
        return cls(**details.__dict__)


class CaptureResponse(StandardizedModel):
    booking_id: str
    payment_id: str
    amount_captured: Money
    capture_ref: Optional[str] = None
    already_captured: bool

    @classmethod
    def from_result(cls, result: CaptureResult) -> "CaptureResponse":
        return cls(**result.__dict__)


class RefundResponse(StandardizedModel):
    booking_id: str
    payment_id: str
    action: str
    amount: Money
    reason: str
    payment_status: str
    refund_ref: Optional[str] = None
    already_processed: bool

    @classmethod
    def from_result(cls, result: RefundResult) -> "RefundResponse":
        return cls(**result.__dict__)


class RejectResponse(StandardizedModel):
    booking_id: str
    status: str
    refund: Optional[RefundResponse] = None


class CancellationEligibilityResponse(StandardizedModel):
    booking_id: str
    can_cancel: bool
    reason: str
    refund_amount: Optional[Money] = None
    cancellation_fee: Optional[Money] = None
    refund_percentage: Optional[int] = None
    hours_until_departure: Optional[float] = None

    @classmethod
    def from_eligibility(
        cls, booking_id: str, eligibility: CancellationEligibility
    ) -> "CancellationEligibilityResponse":
        return cls(booking_id=booking_id, **eligibility.__dict__)


class CancellationResponse(StandardizedModel):
    booking_id: str
    booking_status: str
    refunded: bool
    refund_amount: Money
    cancellation_fee: Money
    reason: str
    already_cancelled: bool

    @classmethod
    def from_result(cls, result: CancellationResult) -> "CancellationResponse":
        return cls(**result.__dict__)


class TimeoutStatsResponse(StandardizedModel):
    total_timeouts: int
    recent_timeouts: int
    pending_bookings: int

    @classmethod
    def from_stats(cls, stats: TimeoutStats) -> "TimeoutStatsResponse":
        return cls(**stats.__dict__)
