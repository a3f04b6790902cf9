# backend/ridepay/routes/v1/payment_holds.py
"""
Payment Hold API Routes - API v1

Synchronous booking payment flows under /api/v1/bookings.

Endpoints:
    GET  /timeouts/stats                       → Timeout statistics
    POST /{booking_id}/payment-hold            → Authorize a hold for a booking
    GET  /{booking_id}/payment-hold            → Current hold details
    POST /{booking_id}/accept                  → Driver accepts; capture the hold
    POST /{booking_id}/reject                  → Driver rejects; release the hold
    GET  /{booking_id}/cancellation-eligibility → Rider cancellation preview
    POST /{booking_id}/cancel                  → Rider cancels
"""

import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from starlette.concurrency import run_in_threadpool

from ...api.dependencies.services import (
    get_cancellation_service,
    get_driver_response_service,
    get_hold_service,
    get_timeout_service,
)
from ...core.exceptions import DomainException
from ...schemas.payment_hold import (
    CancelBookingRequest,
    CancellationEligibilityResponse,
    CancellationResponse,
    CaptureResponse,
    CreatePaymentHoldRequest,
    HoldDetailsResponse,
    PaymentHoldResponse,
    RefundResponse,
    RejectResponse,
    TimeoutStatsResponse,
)
from ...services.booking_cancellation_service import BookingCancellationService
from ...services.booking_timeout_service import BookingTimeoutService
from ...services.driver_response_service import DriverResponseService
from ...services.payment_hold_service import PaymentHoldService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payment-holds-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.get("/timeouts/stats", response_model=TimeoutStatsResponse)
async def get_timeout_stats(
    timeout_service: BookingTimeoutService = Depends(get_timeout_service),
) -> TimeoutStatsResponse:
    """Counts of timed-out and pending bookings."""
    try:
        stats = await run_in_threadpool(timeout_service.get_timeout_stats)
        return TimeoutStatsResponse.from_stats(stats)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Booking-scoped routes
# ============================================================================


@router.post(
    "/{booking_id}/payment-hold",
    response_model=PaymentHoldResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"description": "Booking not found"}, 409: {"description": "Active hold exists"}},
)
async def create_payment_hold(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payload: CreatePaymentHoldRequest = Body(...),
    hold_service: PaymentHoldService = Depends(get_hold_service),
) -> PaymentHoldResponse:
    """Authorize the rider's payment method for a new ride request."""
    try:
        result = await run_in_threadpool(
            hold_service.create_hold,
            payload.amount,
            payload.payment_method,
            booking_id,
            payload.user_id,
            payload.currency,
            payload.provider,
        )
        return PaymentHoldResponse.from_result(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}/payment-hold",
    response_model=HoldDetailsResponse,
    responses={404: {"description": "No payment for booking"}},
)
async def get_payment_hold(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    hold_service: PaymentHoldService = Depends(get_hold_service),
) -> HoldDetailsResponse:
    try:
        details = await run_in_threadpool(hold_service.get_hold_details, booking_id)
        return HoldDetailsResponse.from_details(details)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/accept",
    response_model=CaptureResponse,
    responses={410: {"description": "Hold expired"}},
)
async def accept_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    driver_service: DriverResponseService = Depends(get_driver_response_service),
) -> CaptureResponse:
    """Driver accepts the ride request; the hold is captured."""
    try:
        result = await run_in_threadpool(driver_service.accept, booking_id)
        return CaptureResponse.from_result(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reject", response_model=RejectResponse)
async def reject_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    driver_service: DriverResponseService = Depends(get_driver_response_service),
) -> RejectResponse:
    """Driver rejects the ride request; the hold is released."""
    try:
        result = await run_in_threadpool(driver_service.reject, booking_id)
        return RejectResponse(
            booking_id=booking_id,
            status="rejected",
            refund=RefundResponse.from_result(result) if result else None,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}/cancellation-eligibility",
    response_model=CancellationEligibilityResponse,
)
async def get_cancellation_eligibility(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    user_id: Optional[str] = Query(default=None),
    cancellation_service: BookingCancellationService = Depends(get_cancellation_service),
) -> CancellationEligibilityResponse:
    """Preview what a rider cancellation would refund right now."""
    try:
        eligibility = await run_in_threadpool(
            cancellation_service.check_cancellation_eligibility, booking_id, user_id
        )
        return CancellationEligibilityResponse.from_eligibility(booking_id, eligibility)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/cancel",
    response_model=CancellationResponse,
    responses={422: {"description": "Booking cannot be cancelled"}},
)
async def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[CancelBookingRequest] = Body(default=None),
    cancellation_service: BookingCancellationService = Depends(get_cancellation_service),
) -> CancellationResponse:
    """Rider cancels the booking under the tiered cancellation policy."""
    try:
        result = await run_in_threadpool(
            cancellation_service.cancel_booking,
            booking_id,
            payload.user_id if payload else None,
        )
        return CancellationResponse.from_result(result)
    except DomainException as e:
        handle_domain_exception(e)
