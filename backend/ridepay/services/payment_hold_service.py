# backend/ridepay/services/payment_hold_service.py
"""
Payment hold lifecycle.

PaymentHoldService is the single entry point for moving money on a ride
booking: it authorizes a hold when the ride is requested, captures it when a
driver accepts, and voids or refunds it on rejection, cancellation or timeout.

Every transition follows the same shape:

1. read the booking's payment rows and pick the one the transition applies to
2. make the provider call (idempotency key ``ridepay:<payment_id>:<action>``)
3. write PaymentRecord, HoldRecord and booking in one transaction, guarded by a
   conditional status update so the first writer wins

A provider call never happens inside a transaction. If the provider succeeds
and the write then fails, money has moved without a matching record, so the
service raises ReconciliationRequired instead of a plain error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants.payment_status import (
    ACTIVE_PAYMENT_STATUSES,
    CAPTURABLE_BOOKING_STATUSES,
    CAPTURED_PAYMENT_STATUSES,
    RELEASED_PAYMENT_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    HoldStatus,
    PaymentProvider,
    PaymentStatus,
    RefundReason,
    booking_status_for_reason,
    normalize_payment_status,
    releasable_booking_statuses,
)
from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    HoldExpired,
    ProviderErrorCode,
    ProviderTerminalError,
    ReconciliationRequired,
    RecordNotFound,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import Clock, ensure_utc, utc_now
from ..core.ulid_helper import generate_ulid
from ..events.payment_events import PaymentEventDispatcher, PaymentHoldEvent, default_dispatcher
from ..models.booking import RideBooking
from ..models.payment import PaymentRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..utils.money import MoneyLike, to_money
from .base import BaseService
from .providers.base import AuthorizationResult, HoldProvider, ProviderCapture
from .providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

STORE_ERRORS = (ServiceException, RepositoryException, SQLAlchemyError)


def idempotency_key(payment_id: str, action: str) -> str:
    """Deterministic provider idempotency key for one action on one payment."""
    return f"ridepay:{payment_id}:{action}"


@dataclass(frozen=True)
class HoldResult:
    booking_id: str
    payment_id: str
    provider: str
    status: str
    amount: Decimal
    currency: str
    expires_at: datetime
    external_ref: str


@dataclass(frozen=True)
class CaptureResult:
    booking_id: str
    payment_id: str
    amount_captured: Decimal
    capture_ref: Optional[str]
    already_captured: bool = False


@dataclass(frozen=True)
class RefundResult:
    booking_id: str
    payment_id: str
    action: str  # "void" | "refund"
    amount: Decimal
    reason: str
    payment_status: str
    refund_ref: Optional[str] = None
    already_processed: bool = False


@dataclass(frozen=True)
class HoldDetails:
    booking_id: str
    payment_id: str
    provider: str
    payment_status: str
    amount: Decimal
    currency: str
    expires_at: Optional[datetime]
    hold_status: Optional[str]
    captured_at: Optional[datetime]
    refunded_amount: Optional[Decimal]
    is_valid: bool


class PaymentHoldService(BaseService):
    """
    Hold Manager: create, capture and release payment holds.

    Stateless apart from its collaborators; the session, provider registry and
    clock are all injected.
    """

    def __init__(
        self,
        db: Session,
        providers: ProviderRegistry,
        clock: Clock = utc_now,
        events: Optional[PaymentEventDispatcher] = None,
        authorization_window: Optional[timedelta] = None,
    ):
        super().__init__(db)
        self.providers = providers
        self.clock = clock
        self.events = events or default_dispatcher
        self.authorization_window = authorization_window or timedelta(
            hours=settings.hold_authorization_window_hours
        )
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.hold_repository = RepositoryFactory.create_hold_repository(db)

    # ------------------------------------------------------------------ create

    @BaseService.measure_operation("create_hold")
    def create_hold(
        self,
        amount: MoneyLike,
        method: Optional[str],
        booking_id: str,
        user_id: str,
        currency: Optional[str] = None,
        provider: Optional[Union[str, PaymentProvider]] = None,
    ) -> HoldResult:
        """
        Authorize ``amount`` against the rider's payment method and open a hold.

        The provider is chosen here, once, and carried on the PaymentRecord for
        every later transition. Without an explicit ``provider`` a ``paypal``
        method selects PayPal and anything else is treated as a Stripe
        payment method token.
        """
        hold_amount = self._validated_amount(amount)
        if not method or not str(method).strip():
            raise ValidationException("A payment method is required", code="PAYMENT_METHOD_REQUIRED")
        if not user_id:
            raise ValidationException("user_id is required", code="USER_REQUIRED")

        booking = self._get_booking(booking_id)
        if booking.status != BookingStatus.PENDING.value:
            raise BusinessRuleException(
                f"Cannot place a payment hold on a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )
        existing = self.payment_repository.get_active_for_booking(booking_id)
        if existing is not None:
            raise ConflictException(
                "Booking already has an active payment hold",
                code="ACTIVE_HOLD_EXISTS",
                details={"booking_id": booking_id, "payment_id": existing.id},
            )

        hold_provider = self.providers.get(self._select_provider(method, provider))
        hold_currency = (currency or settings.default_currency).lower()
        payment_id = generate_ulid()

        auth = hold_provider.authorize(
            hold_amount,
            hold_currency,
            {"booking_id": booking_id, "payment_id": payment_id, "user_id": user_id},
            payment_method=None if hold_provider.requires_explicit_authorization else method,
            idempotency_key=idempotency_key(payment_id, "authorize"),
        )

        now = self.clock()
        expires_at = now + self.authorization_window
        try:
            with self.transaction():
                self.payment_repository.create(
                    id=payment_id,
                    booking_id=booking_id,
                    user_id=user_id,
                    amount=hold_amount,
                    currency=hold_currency,
                    provider=hold_provider.name,
                    payment_method=method,
                    payment_intent_id=auth.external_ref,
                    authorization_id=auth.authorization_ref,
                    status=auth.status,
                    expires_at=expires_at,
                    created_at=now,
                )
                self.hold_repository.create(
                    booking_id=booking_id,
                    payment_id=payment_id,
                    hold_amount=hold_amount,
                    hold_expires_at=expires_at,
                    status=HoldStatus.ACTIVE.value,
                    created_at=now,
                )
                self.booking_repository.update(
                    booking_id,
                    payment_status=auth.status,
                    response_deadline=expires_at,
                    payment_expires_at=expires_at,
                    payment_authorized_at=now,
                    updated_at=now,
                )
        except STORE_ERRORS as exc:
            self._release_orphaned_authorization(hold_provider, auth, payment_id)
            raise self._reconciliation_required(
                "authorize", booking_id, payment_id, auth.external_ref, exc
            ) from exc

        self.logger.info(
            "Payment hold created",
            extra={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "provider": hold_provider.name,
                "status": auth.status,
                "amount": str(hold_amount),
            },
        )
        prometheus_metrics.record_hold_transition(hold_provider.name, "authorized")
        self._emit(booking_id, payment_id, "authorized", hold_amount, None, hold_provider.name, now)
        return HoldResult(
            booking_id=booking_id,
            payment_id=payment_id,
            provider=hold_provider.name,
            status=auth.status,
            amount=hold_amount,
            currency=hold_currency,
            expires_at=expires_at,
            external_ref=auth.external_ref,
        )

    # ----------------------------------------------------------------- capture

    @BaseService.measure_operation("capture_hold")
    def capture_hold(self, booking_id: str) -> CaptureResult:
        """
        Capture the booking's active hold; a second call returns the first capture.

        Only pending or confirmed bookings are captured. A closed booking whose
        payment is still active is left for the release sweeps.
        """
        booking = self._get_booking(booking_id)
        if booking.status not in CAPTURABLE_BOOKING_STATUSES:
            self.logger.warning(
                "Capture refused for closed booking",
                extra={"booking_id": booking_id, "status": booking.status},
            )
            raise BusinessRuleException(
                f"Cannot capture payment for a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )
        payments = self._payments_or_not_found(booking_id)

        payment = self._first(payments, ACTIVE_PAYMENT_STATUSES)
        if payment is None:
            captured = self._first(payments, CAPTURED_PAYMENT_STATUSES)
            if captured is not None:
                return self._captured_result(captured, already_captured=True)
            raise self._not_found("No capturable payment found for booking", booking_id)

        now = self.clock()
        expires_at = ensure_utc(payment.expires_at)
        if expires_at is not None and now > expires_at:
            self.logger.info(
                "Capture rejected: hold expired",
                extra={"booking_id": booking_id, "payment_id": payment.id},
            )
            raise HoldExpired(booking_id, payment.id, expires_at.isoformat())

        hold_provider = self.providers.get(payment.provider)
        if payment.status == PaymentStatus.REQUIRES_ACTION.value:
            payment = self._complete_authorization(hold_provider, payment, now)
            if payment.status in CAPTURED_PAYMENT_STATUSES:
                return self._captured_result(payment, already_captured=True)

        try:
            capture = hold_provider.capture(
                self._authorization_ref(payment),
                None,
                idempotency_key=idempotency_key(payment.id, "capture"),
            )
        except ProviderTerminalError as exc:
            if exc.error_code == ProviderErrorCode.AUTHORIZATION_EXPIRED:
                raise HoldExpired(
                    booking_id, payment.id, expires_at.isoformat() if expires_at else None
                ) from exc
            raise

        try:
            with self.transaction():
                won = self.payment_repository.update_if_status(
                    payment.id,
                    ACTIVE_PAYMENT_STATUSES,
                    status=PaymentStatus.CAPTURED.value,
                    transaction_id=capture.capture_ref,
                    captured_at=now,
                    updated_at=now,
                )
                if won:
                    self._set_hold_status(payment.id, [HoldStatus.ACTIVE], HoldStatus.CAPTURED, now)
                    confirmed = self.booking_repository.update_if_status(
                        booking_id,
                        [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value],
                        status=BookingStatus.CONFIRMED.value,
                        payment_status=BookingPaymentStatus.CAPTURED.value,
                        updated_at=now,
                    )
                    if not confirmed:
                        self.logger.warning(
                            "Captured payment for a booking that is no longer pending",
                            extra={"booking_id": booking_id, "payment_id": payment.id},
                        )
        except STORE_ERRORS as exc:
            raise self._reconciliation_required(
                "capture", booking_id, payment.id, capture.capture_ref, exc
            ) from exc

        if not won:
            return self._adopt_concurrent_capture(booking_id, payment.id)

        self.logger.info(
            "Payment captured",
            extra={
                "booking_id": booking_id,
                "payment_id": payment.id,
                "amount": str(capture.amount_captured),
                "already_captured": capture.already_captured,
            },
        )
        prometheus_metrics.record_hold_transition(payment.provider, "captured")
        self._emit(
            booking_id, payment.id, "captured", capture.amount_captured, None, payment.provider, now
        )
        return CaptureResult(
            booking_id=booking_id,
            payment_id=payment.id,
            amount_captured=capture.amount_captured,
            capture_ref=capture.capture_ref,
            already_captured=capture.already_captured,
        )

    # ------------------------------------------------------------------ refund

    @BaseService.measure_operation("refund_hold")
    def refund_hold(
        self,
        booking_id: str,
        reason: Union[str, RefundReason],
        amount: Optional[MoneyLike] = None,
    ) -> RefundResult:
        """
        Release the booking's funds: void an uncaptured hold or refund a capture.

        ``amount`` only applies to captured payments (partial refund); a void
        always releases the full hold. Repeated calls return the stored result
        without another provider call.
        """
        refund_reason = self._validated_reason(reason)
        self._get_booking(booking_id)
        payments = self._payments_or_not_found(booking_id)

        payment = self._first(payments, ACTIVE_PAYMENT_STATUSES | CAPTURED_PAYMENT_STATUSES)
        if payment is None:
            released = self._first(payments, RELEASED_PAYMENT_STATUSES)
            if released is not None:
                return self._released_result(released, refund_reason)
            raise self._not_found("No refundable payment found for booking", booking_id)

        hold_provider = self.providers.get(payment.provider)
        if payment.status in ACTIVE_PAYMENT_STATUSES:
            return self._void_or_fallback(hold_provider, payment, refund_reason, amount)
        return self._refund_captured(hold_provider, payment, refund_reason, amount)

    # ------------------------------------------------------------------ queries

    def is_hold_valid(self, booking_id: str) -> bool:
        payment = self.payment_repository.get_active_for_booking(booking_id)
        if payment is None:
            return False
        expires_at = ensure_utc(payment.expires_at)
        return expires_at is None or self.clock() <= expires_at

    def get_hold_details(self, booking_id: str) -> HoldDetails:
        payments = self._payments_or_not_found(booking_id)
        payment = payments[0]
        holds = self.hold_repository.list_for_payment(payment.id)
        expires_at = ensure_utc(payment.expires_at)
        is_valid = payment.status in ACTIVE_PAYMENT_STATUSES and (
            expires_at is None or self.clock() <= expires_at
        )
        return HoldDetails(
            booking_id=booking_id,
            payment_id=payment.id,
            provider=payment.provider,
            payment_status=normalize_payment_status(payment.status) or payment.status,
            amount=to_money(payment.amount),
            currency=payment.currency,
            expires_at=expires_at,
            hold_status=holds[0].status if holds else None,
            captured_at=ensure_utc(payment.captured_at),
            refunded_amount=payment.refunded_amount,
            is_valid=is_valid,
        )

    # ------------------------------------------------------------ void / refund

    def _void_or_fallback(
        self,
        hold_provider: HoldProvider,
        payment: PaymentRecord,
        reason: RefundReason,
        amount: Optional[MoneyLike],
    ) -> RefundResult:
        if amount is not None and to_money(amount) != to_money(payment.amount):
            self.logger.info(
                "Ignoring partial amount for an uncaptured hold; releasing in full",
                extra={"booking_id": payment.booking_id, "payment_id": payment.id},
            )

        if payment.status == PaymentStatus.REQUIRES_ACTION.value and not payment.authorization_id:
            # Order was never authorized: nothing is reserved at the provider.
            return self._persist_void(payment, reason)

        try:
            hold_provider.void(
                self._authorization_ref(payment),
                idempotency_key=idempotency_key(payment.id, "void"),
            )
        except ProviderTerminalError as exc:
            if exc.error_code == ProviderErrorCode.AUTHORIZATION_EXPIRED:
                self.logger.info(
                    "Authorization already lapsed at provider",
                    extra={"booking_id": payment.booking_id, "payment_id": payment.id},
                )
                return self._persist_void(payment, reason)
            if exc.error_code != ProviderErrorCode.ALREADY_CAPTURED:
                raise
            self.logger.warning(
                "Void rejected because payment was already captured; refunding instead",
                extra={"booking_id": payment.booking_id, "payment_id": payment.id},
            )
            capture = hold_provider.capture(
                self._authorization_ref(payment),
                None,
                idempotency_key=idempotency_key(payment.id, "capture"),
            )
            return self._refund_captured(
                hold_provider,
                payment,
                reason,
                payment.amount,
                capture=capture,
            )
        return self._persist_void(payment, reason)

    def _persist_void(self, payment: PaymentRecord, reason: RefundReason) -> RefundResult:
        now = self.clock()
        released_amount = to_money(payment.amount)
        try:
            with self.transaction():
                won = self.payment_repository.update_if_status(
                    payment.id,
                    ACTIVE_PAYMENT_STATUSES,
                    status=PaymentStatus.CANCELLED.value,
                    refund_reason=reason.value,
                    refunded_amount=released_amount,
                    cancellation_fee=Decimal("0.00"),
                    refunded_at=now,
                    updated_at=now,
                )
                if won:
                    self._set_hold_status(payment.id, [HoldStatus.ACTIVE], HoldStatus.RELEASED, now)
                    self._close_booking(
                        payment.booking_id, reason, BookingPaymentStatus.CANCELLED, now
                    )
        except STORE_ERRORS as exc:
            raise self._reconciliation_required(
                "void", payment.booking_id, payment.id, payment.authorization_id, exc
            ) from exc

        if not won:
            return self._adopt_concurrent_release(payment, reason)

        self.logger.info(
            "Payment hold voided",
            extra={
                "booking_id": payment.booking_id,
                "payment_id": payment.id,
                "reason": reason.value,
            },
        )
        prometheus_metrics.record_hold_transition(payment.provider, "voided")
        self._emit(
            payment.booking_id, payment.id, "voided", released_amount, reason.value, payment.provider, now
        )
        return RefundResult(
            booking_id=payment.booking_id,
            payment_id=payment.id,
            action="void",
            amount=released_amount,
            reason=reason.value,
            payment_status=PaymentStatus.CANCELLED.value,
        )

    def _refund_captured(
        self,
        hold_provider: HoldProvider,
        payment: PaymentRecord,
        reason: RefundReason,
        amount: Optional[MoneyLike],
        capture: Optional[ProviderCapture] = None,
    ) -> RefundResult:
        total = to_money(payment.amount)
        refund_amount = total if amount is None else to_money(amount)
        if refund_amount <= 0 or refund_amount > total:
            raise ValidationException(
                "Refund amount must be positive and no more than the captured amount",
                code="INVALID_REFUND_AMOUNT",
                details={"amount": str(refund_amount), "captured": str(total)},
            )

        capture_ref = capture.capture_ref if capture else payment.transaction_id
        if not capture_ref:
            capture = hold_provider.capture(
                self._authorization_ref(payment),
                None,
                idempotency_key=idempotency_key(payment.id, "capture"),
            )
            capture_ref = capture.capture_ref

        refund_ref: Optional[str]
        try:
            provider_refund = hold_provider.refund(
                capture_ref,
                refund_amount,
                reason.value,
                idempotency_key=idempotency_key(payment.id, "refund"),
                currency=payment.currency,
            )
            refund_ref = provider_refund.refund_ref
        except ProviderTerminalError as exc:
            if exc.error_code != ProviderErrorCode.ALREADY_REFUNDED:
                raise
            self.logger.warning(
                "Provider reports payment already refunded; recording refund",
                extra={"booking_id": payment.booking_id, "payment_id": payment.id},
            )
            refund_ref = None

        now = self.clock()
        booking_payment_status = (
            BookingPaymentStatus.REFUNDED
            if refund_amount == total
            else BookingPaymentStatus.PARTIALLY_REFUNDED
        )
        try:
            with self.transaction():
                won = self.payment_repository.update_if_status(
                    payment.id,
                    ACTIVE_PAYMENT_STATUSES | CAPTURED_PAYMENT_STATUSES,
                    status=PaymentStatus.REFUNDED.value,
                    transaction_id=capture_ref,
                    refund_id=refund_ref,
                    refund_reason=reason.value,
                    refunded_amount=refund_amount,
                    cancellation_fee=total - refund_amount,
                    captured_at=payment.captured_at or now,
                    refunded_at=now,
                    updated_at=now,
                )
                if won:
                    self._set_hold_status(
                        payment.id, [HoldStatus.ACTIVE, HoldStatus.CAPTURED], HoldStatus.REFUNDED, now
                    )
                    self._close_booking(payment.booking_id, reason, booking_payment_status, now)
        except STORE_ERRORS as exc:
            raise self._reconciliation_required(
                "refund", payment.booking_id, payment.id, refund_ref, exc
            ) from exc

        if not won:
            return self._adopt_concurrent_release(payment, reason)

        self.logger.info(
            "Payment refunded",
            extra={
                "booking_id": payment.booking_id,
                "payment_id": payment.id,
                "amount": str(refund_amount),
                "reason": reason.value,
            },
        )
        prometheus_metrics.record_hold_transition(payment.provider, "refunded")
        self._emit(
            payment.booking_id, payment.id, "refunded", refund_amount, reason.value, payment.provider, now
        )
        return RefundResult(
            booking_id=payment.booking_id,
            payment_id=payment.id,
            action="refund",
            amount=refund_amount,
            reason=reason.value,
            payment_status=PaymentStatus.REFUNDED.value,
            refund_ref=refund_ref,
        )

    # ----------------------------------------------------------------- helpers

    def _complete_authorization(
        self, hold_provider: HoldProvider, payment: PaymentRecord, now: datetime
    ) -> PaymentRecord:
        order_ref = payment.payment_intent_id
        try:
            authorization_ref = hold_provider.complete_authorization(
                order_ref or "",
                idempotency_key=idempotency_key(payment.id, "authorize_order"),
            )
        except ProviderTerminalError as exc:
            if exc.error_code == ProviderErrorCode.AUTHORIZATION_EXPIRED:
                expires_at = ensure_utc(payment.expires_at)
                raise HoldExpired(
                    payment.booking_id, payment.id, expires_at.isoformat() if expires_at else None
                ) from exc
            raise

        try:
            with self.transaction():
                won = self.payment_repository.update_if_status(
                    payment.id,
                    [PaymentStatus.REQUIRES_ACTION.value],
                    authorization_id=authorization_ref,
                    status=PaymentStatus.REQUIRES_CAPTURE.value,
                    updated_at=now,
                )
        except STORE_ERRORS as exc:
            raise self._reconciliation_required(
                "authorize_order", payment.booking_id, payment.id, authorization_ref, exc
            ) from exc

        self.payment_repository.refresh(payment)
        if not won and payment.status not in ACTIVE_PAYMENT_STATUSES | CAPTURED_PAYMENT_STATUSES:
            raise ConflictException(
                "Payment changed state while completing authorization",
                details={"payment_id": payment.id, "status": payment.status},
            )
        self.logger.info(
            "Explicit authorization completed",
            extra={"booking_id": payment.booking_id, "payment_id": payment.id},
        )
        return payment

    def _release_orphaned_authorization(
        self, hold_provider: HoldProvider, auth: AuthorizationResult, payment_id: str
    ) -> None:
        if not auth.authorization_ref:
            return
        try:
            hold_provider.void(
                auth.authorization_ref, idempotency_key=idempotency_key(payment_id, "void")
            )
        except Exception:
            self.logger.exception(
                "Failed to void authorization after store failure",
                extra={"payment_id": payment_id, "authorization_ref": auth.authorization_ref},
            )

    def _adopt_concurrent_capture(self, booking_id: str, payment_id: str) -> CaptureResult:
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is not None:
            self.payment_repository.refresh(payment)
        if payment is not None and payment.status in CAPTURED_PAYMENT_STATUSES:
            self.logger.info(
                "Concurrent capture already recorded", extra={"booking_id": booking_id}
            )
            return self._captured_result(payment, already_captured=True)
        raise ConflictException(
            "Payment changed state during capture",
            details={"booking_id": booking_id, "payment_id": payment_id},
        )

    def _adopt_concurrent_release(self, payment: PaymentRecord, reason: RefundReason) -> RefundResult:
        self.payment_repository.refresh(payment)
        if payment.status in RELEASED_PAYMENT_STATUSES:
            return self._released_result(payment, reason)
        raise ConflictException(
            "Payment changed state during release",
            details={"booking_id": payment.booking_id, "payment_id": payment.id},
        )

    def _captured_result(self, payment: PaymentRecord, *, already_captured: bool) -> CaptureResult:
        return CaptureResult(
            booking_id=payment.booking_id,
            payment_id=payment.id,
            amount_captured=to_money(payment.amount),
            capture_ref=payment.transaction_id,
            already_captured=already_captured,
        )

    def _released_result(self, payment: PaymentRecord, reason: RefundReason) -> RefundResult:
        status = normalize_payment_status(payment.status) or payment.status
        stored_amount = (
            payment.refunded_amount if payment.refunded_amount is not None else payment.amount
        )
        return RefundResult(
            booking_id=payment.booking_id,
            payment_id=payment.id,
            action="refund" if status == PaymentStatus.REFUNDED.value else "void",
            amount=to_money(stored_amount),
            reason=payment.refund_reason or reason.value,
            payment_status=status,
            refund_ref=payment.refund_id,
            already_processed=True,
        )

    def _set_hold_status(
        self,
        payment_id: str,
        expected: List[HoldStatus],
        target: HoldStatus,
        now: datetime,
    ) -> None:
        for hold in self.hold_repository.list_for_payment(payment_id):
            self.hold_repository.update_if_status(
                hold.id, [status.value for status in expected], status=target.value, updated_at=now
            )

    def _close_booking(
        self,
        booking_id: str,
        reason: RefundReason,
        payment_status: BookingPaymentStatus,
        now: datetime,
    ) -> None:
        status = booking_status_for_reason(reason)
        booking = self.booking_repository.get_by_id(booking_id)
        if (
            booking is not None
            and reason == RefundReason.DRIVER_REJECTED
            and booking.status == BookingStatus.REJECTED.value
        ):
            # A driver rejection keeps its own terminal status.
            status = booking.status
        closed = self.booking_repository.update_if_status(
            booking_id,
            releasable_booking_statuses(reason),
            status=status,
            payment_status=payment_status.value,
            updated_at=now,
        )
        if not closed:
            self.logger.warning(
                "Booking moved on before its payment was released; status left unchanged",
                extra={
                    "booking_id": booking_id,
                    "reason": reason.value,
                    "status": booking.status if booking else None,
                },
            )

    def _authorization_ref(self, payment: PaymentRecord) -> str:
        return payment.authorization_id or payment.payment_intent_id or ""

    def _get_booking(self, booking_id: str) -> RideBooking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking

    def _payments_or_not_found(self, booking_id: str) -> List[PaymentRecord]:
        payments = self.payment_repository.list_for_booking(booking_id)
        if not payments:
            raise RecordNotFound(
                f"No payments found for booking {booking_id}", booking_id=booking_id, statuses={}
            )
        return payments

    def _not_found(self, message: str, booking_id: str) -> RecordNotFound:
        counts = self.payment_repository.status_counts(booking_id)
        self.logger.warning(message, extra={"booking_id": booking_id, "statuses": counts})
        return RecordNotFound(message, booking_id=booking_id, statuses=counts)

    @staticmethod
    def _first(payments: List[PaymentRecord], statuses: frozenset) -> Optional[PaymentRecord]:
        for payment in payments:
            if payment.status in statuses:
                return payment
        return None

    @staticmethod
    def _validated_amount(amount: MoneyLike) -> Decimal:
        try:
            value = to_money(amount)
        except ValueError as exc:
            raise ValidationException(str(exc), code="INVALID_AMOUNT") from exc
        if value <= 0:
            raise ValidationException(
                "Amount must be greater than zero", code="INVALID_AMOUNT", details={"amount": str(value)}
            )
        return value

    @staticmethod
    def _validated_reason(reason: Union[str, RefundReason]) -> RefundReason:
        try:
            return RefundReason(reason)
        except ValueError as exc:
            raise ValidationException(
                f"Unsupported refund reason: {reason}", code="INVALID_REFUND_REASON"
            ) from exc

    @staticmethod
    def _select_provider(
        method: str, provider: Optional[Union[str, PaymentProvider]]
    ) -> Union[str, PaymentProvider]:
        if provider is not None:
            return provider
        if method.strip().lower() == PaymentProvider.PAYPAL.value:
            return PaymentProvider.PAYPAL
        return PaymentProvider.STRIPE

    def _reconciliation_required(
        self,
        action: str,
        booking_id: str,
        payment_id: Optional[str],
        provider_reference: Optional[str],
        exc: BaseException,
    ) -> ReconciliationRequired:
        self.logger.error(
            "Provider %s succeeded but recording it failed; reconciliation required",
            action,
            extra={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "provider_reference": provider_reference,
                "error": str(exc),
            },
        )
        prometheus_metrics.record_reconciliation_required(action)
        return ReconciliationRequired(
            f"Provider {action} succeeded but the record update failed",
            booking_id=booking_id,
            payment_id=payment_id,
            provider_action=action,
            provider_reference=provider_reference,
        )

    def _emit(
        self,
        booking_id: str,
        payment_id: str,
        outcome: str,
        amount: Decimal,
        reason: Optional[str],
        provider: str,
        occurred_at: datetime,
    ) -> None:
        self.events.dispatch(
            PaymentHoldEvent(
                booking_id=booking_id,
                payment_id=payment_id,
                outcome=outcome,  # type: ignore[arg-type]
                amount=amount,
                reason=reason,
                provider=provider,
                occurred_at=occurred_at,
            )
        )


__all__ = [
    "CaptureResult",
    "HoldDetails",
    "HoldResult",
    "PaymentHoldService",
    "RefundResult",
    "idempotency_key",
]
