# backend/ridepay/core/exceptions.py
"""
Domain-specific exceptions for the payment-hold service.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input validation fails before any external call."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class RecordNotFound(NotFoundException):
    """
    Raised when no matching booking or payment exists.

    Carries enough detail for operators: how many payments exist for the
    booking and a per-status breakdown.
    """

    def __init__(
        self,
        message: str,
        *,
        booking_id: Optional[str] = None,
        statuses: Optional[Mapping[str, int]] = None,
    ) -> None:
        status_counts = dict(statuses or {})
        details: Dict[str, Any] = {
            "payment_count": sum(status_counts.values()),
            "statuses": status_counts,
        }
        if booking_id is not None:
            details["booking_id"] = booking_id
        super().__init__(message=message, code="RECORD_NOT_FOUND", details=details)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class CancellationNotAllowed(BusinessRuleException):
    """Raised when a rider cancellation is not permitted for the booking's state."""

    def __init__(self, booking_id: str, reason: str) -> None:
        super().__init__(
            message=reason,
            code="CANCELLATION_NOT_ALLOWED",
            details={"booking_id": booking_id},
        )


class HoldExpired(BusinessRuleException):
    """Raised when a capture is attempted after the authorization window closed."""

    status_code = status.HTTP_410_GONE

    def __init__(self, booking_id: str, payment_id: Optional[str], expires_at: Optional[str]) -> None:
        super().__init__(
            message="Payment authorization has expired",
            code="HOLD_EXPIRED",
            details={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "expires_at": expires_at,
            },
        )


class ProviderErrorCode(str, Enum):
    """Structured provider rejection codes shared by every adapter."""

    ALREADY_CAPTURED = "already_captured"
    ALREADY_VOIDED = "already_voided"
    ALREADY_REFUNDED = "already_refunded"
    AUTHORIZATION_EXPIRED = "authorization_expired"
    AUTHORIZATION_INCOMPLETE = "authorization_incomplete"
    PAYMENT_DECLINED = "payment_declined"
    INVALID_STATE = "invalid_state"
    UNKNOWN = "unknown"


class PaymentProviderError(DomainException):
    """Base class for failures reported by a payment provider."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"provider": provider, **(details or {})}
        super().__init__(message=message, code=code, details=merged)
        self.provider = provider


class ProviderTransientError(PaymentProviderError):
    """Network, timeout or provider-side outage; the whole operation may be retried."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(
        self, message: str, *, provider: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message, provider=provider, code="PROVIDER_UNAVAILABLE", details=details
        )


class ProviderTerminalError(PaymentProviderError):
    """The provider explicitly rejected the request; retrying will not help."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        error_code: ProviderErrorCode = ProviderErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            code=f"PROVIDER_{error_code.value.upper()}",
            details={"provider_error_code": error_code.value, **(details or {})},
        )
        self.error_code = error_code


class InvalidProviderReference(ValueError):
    """A provider call was attempted with a missing or malformed external reference."""


class ReconciliationRequired(DomainException):
    """
    The provider call succeeded but the follow-up store write failed.

    Money has already moved (or been released), so this is never a plain
    failure: it must be picked up by the reconciliation pass or an operator.
    """

    def __init__(
        self,
        message: str,
        *,
        booking_id: str,
        payment_id: Optional[str],
        provider_action: str,
        provider_reference: Optional[str] = None,
    ) -> None:
        super().__init__(
            message=message,
            code="RECONCILIATION_REQUIRED",
            details={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "provider_action": provider_action,
                "provider_reference": provider_reference,
            },
        )
        self.booking_id = booking_id
        self.payment_id = payment_id
        self.provider_action = provider_action


class ServiceException(DomainException):
    """Raised when a service operation fails."""


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
