"""
Stripe adapter: native two-phase authorize / capture / cancel on one PaymentIntent.

Rejections are classified from Stripe's structured error ``code`` and, where
Stripe only reports "unexpected state", from the PaymentIntent's current status.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Callable, Mapping, Optional, TypeVar

import stripe

from ...constants.payment_status import PaymentProvider, PaymentStatus
from ...core.config import settings
from ...core.exceptions import (
    InvalidProviderReference,
    ProviderErrorCode,
    ProviderTerminalError,
    ProviderTransientError,
)
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...utils.money import from_minor_units, to_minor_units
from .base import AuthorizationResult, HoldProvider, ProviderCapture, ProviderRefund

logger = logging.getLogger(__name__)

R = TypeVar("R")

_UNEXPECTED_STATE = "payment_intent_unexpected_state"
_ALREADY_REFUNDED = "charge_already_refunded"
_ALREADY_CAPTURED = "charge_already_captured"
_EXPIRED_FOR_CAPTURE = "charge_expired_for_capture"

_TERMINAL_CODE_MAP = {
    _ALREADY_REFUNDED: ProviderErrorCode.ALREADY_REFUNDED,
    _ALREADY_CAPTURED: ProviderErrorCode.ALREADY_CAPTURED,
    _EXPIRED_FOR_CAPTURE: ProviderErrorCode.AUTHORIZATION_EXPIRED,
    "payment_intent_authentication_failure": ProviderErrorCode.AUTHORIZATION_INCOMPLETE,
    _UNEXPECTED_STATE: ProviderErrorCode.INVALID_STATE,
}


def configure_stripe(secret_key: Optional[str] = None) -> bool:
    """Apply API key and network settings to the module-level Stripe client."""
    key = secret_key
    if key is None and settings.stripe_secret_key:
        key = settings.stripe_secret_key.get_secret_value()
    if not key:
        logger.warning("Stripe secret key not configured - Stripe holds are unavailable")
        return False

    stripe.api_key = key
    stripe.max_network_retries = settings.stripe_max_network_retries
    try:
        stripe.default_http_client = stripe.http_client.RequestsClient(
            timeout=settings.stripe_timeout_seconds
        )
    except AttributeError as exc:
        logger.warning("Stripe HTTP client customization unavailable: %s", exc)
    return True


class StripeHoldProvider(HoldProvider):
    """Manual-capture PaymentIntents; capture and cancel act on the same intent."""

    provider = PaymentProvider.STRIPE
    requires_explicit_authorization = False

    def authorize(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        *,
        payment_method: Optional[str],
        idempotency_key: str,
    ) -> AuthorizationResult:
        self._require_positive(amount)
        method = self._require_ref(payment_method, "payment method")
        pi = self._call(
            "authorize",
            lambda: stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=method,
                capture_method="manual",
                confirm=True,
                off_session=True,
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
            ),
        )
        status = getattr(pi, "status", None)
        if status != "requires_capture":
            # 3DS or another customer step is required; an off-session hold cannot complete it.
            logger.warning(
                "Stripe authorization incomplete",
                extra={"payment_intent_id": pi.id, "stripe_status": status},
            )
            self._cancel_quietly(pi.id, idempotency_key=f"{idempotency_key}:abandon")
            raise ProviderTerminalError(
                f"Payment authorization did not complete (status={status})",
                provider=self.name,
                error_code=ProviderErrorCode.AUTHORIZATION_INCOMPLETE,
                details={"payment_intent_id": pi.id},
            )
        return AuthorizationResult(
            external_ref=pi.id,
            status=PaymentStatus.AUTHORIZED.value,
            authorization_ref=pi.id,
        )

    def capture(
        self,
        external_ref: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: str,
    ) -> ProviderCapture:
        intent_id = self._require_ref(external_ref, "payment intent id", prefix="pi_")
        kwargs: dict[str, Any] = {"idempotency_key": idempotency_key}
        if amount is not None:
            self._require_positive(amount)
            kwargs["amount_to_capture"] = to_minor_units(amount)
        try:
            pi = self._call("capture", lambda: stripe.PaymentIntent.capture(intent_id, **kwargs))
        except ProviderTerminalError as exc:
            if exc.error_code != ProviderErrorCode.INVALID_STATE:
                raise
            pi = self._retrieve(intent_id)
            if pi.status == "succeeded":
                logger.info("Stripe intent %s already captured", intent_id)
                return self._capture_result(pi, already_captured=True)
            if pi.status == "canceled":
                raise self._canceled_error(pi) from exc
            raise
        return self._capture_result(pi, already_captured=False)

    def void(self, external_ref: str, *, idempotency_key: str) -> None:
        intent_id = self._require_ref(external_ref, "payment intent id", prefix="pi_")
        try:
            self._call(
                "void",
                lambda: stripe.PaymentIntent.cancel(intent_id, idempotency_key=idempotency_key),
            )
        except ProviderTerminalError as exc:
            if exc.error_code != ProviderErrorCode.INVALID_STATE:
                raise
            pi = self._retrieve(intent_id)
            if pi.status == "canceled":
                logger.info("Stripe intent %s already canceled", intent_id)
                return
            if pi.status == "succeeded":
                raise ProviderTerminalError(
                    "Cannot void a captured payment",
                    provider=self.name,
                    error_code=ProviderErrorCode.ALREADY_CAPTURED,
                    details={"payment_intent_id": intent_id},
                ) from exc
            raise

    def refund(
        self,
        external_ref: str,
        amount: Decimal,
        reason: str,
        *,
        idempotency_key: str,
        currency: Optional[str] = None,
    ) -> ProviderRefund:
        ref = self._require_ref(external_ref, "payment reference")
        if not ref.startswith(("pi_", "ch_")):
            raise InvalidProviderReference(f"{self.name}: malformed payment reference {ref!r}")
        self._require_positive(amount)
        target = {"payment_intent": ref} if ref.startswith("pi_") else {"charge": ref}
        try:
            refund = self._call(
                "refund",
                lambda: stripe.Refund.create(
                    amount=to_minor_units(amount),
                    reason="requested_by_customer",
                    metadata={"ridepay_reason": reason},
                    idempotency_key=idempotency_key,
                    **target,
                ),
            )
        except ProviderTerminalError as exc:
            if exc.error_code != ProviderErrorCode.ALREADY_REFUNDED:
                raise
            existing = self._call("refund_lookup", lambda: stripe.Refund.list(limit=1, **target))
            data = list(getattr(existing, "data", None) or [])
            if not data:
                raise
            logger.info("Stripe payment %s already refunded", ref)
            return ProviderRefund(
                refund_ref=data[0].id,
                amount_refunded=from_minor_units(data[0].amount),
                already_refunded=True,
            )
        return ProviderRefund(
            refund_ref=refund.id,
            amount_refunded=from_minor_units(refund.amount),
        )

    # ------------------------------------------------------------------ helpers

    def _retrieve(self, intent_id: str) -> Any:
        return self._call("retrieve", lambda: stripe.PaymentIntent.retrieve(intent_id))

    def _capture_result(self, pi: Any, *, already_captured: bool) -> ProviderCapture:
        received = getattr(pi, "amount_received", None) or getattr(pi, "amount", 0)
        capture_ref = getattr(pi, "latest_charge", None) or pi.id
        if not isinstance(capture_ref, str):
            capture_ref = getattr(capture_ref, "id", pi.id)
        return ProviderCapture(
            capture_ref=capture_ref,
            amount_captured=from_minor_units(received),
            already_captured=already_captured,
        )

    def _canceled_error(self, pi: Any) -> ProviderTerminalError:
        if getattr(pi, "cancellation_reason", None) == "automatic":
            code = ProviderErrorCode.AUTHORIZATION_EXPIRED
            message = "Payment authorization expired"
        else:
            code = ProviderErrorCode.ALREADY_VOIDED
            message = "Payment authorization was already cancelled"
        return ProviderTerminalError(
            message, provider=self.name, error_code=code, details={"payment_intent_id": pi.id}
        )

    def _cancel_quietly(self, intent_id: str, *, idempotency_key: str) -> None:
        try:
            stripe.PaymentIntent.cancel(intent_id, idempotency_key=idempotency_key)
        except stripe.StripeError as exc:
            logger.warning("Failed to cancel incomplete Stripe intent %s: %s", intent_id, exc)

    def _call(self, operation: str, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except stripe.CardError as exc:
            prometheus_metrics.record_provider_error(self.name, operation, "payment_declined")
            raise ProviderTerminalError(
                exc.user_message or "Card was declined",
                provider=self.name,
                error_code=ProviderErrorCode.PAYMENT_DECLINED,
                details={"stripe_code": exc.code, "decline_code": getattr(exc, "decline_code", None)},
            ) from exc
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            prometheus_metrics.record_provider_error(self.name, operation, "transient")
            logger.warning("Transient Stripe failure during %s: %s", operation, exc)
            raise ProviderTransientError(
                f"Stripe {operation} failed temporarily", provider=self.name
            ) from exc
        except stripe.InvalidRequestError as exc:
            code = _TERMINAL_CODE_MAP.get(exc.code or "", ProviderErrorCode.UNKNOWN)
            prometheus_metrics.record_provider_error(self.name, operation, code.value)
            raise ProviderTerminalError(
                str(exc.user_message or exc),
                provider=self.name,
                error_code=code,
                details={"stripe_code": exc.code},
            ) from exc
        except stripe.StripeError as exc:
            prometheus_metrics.record_provider_error(self.name, operation, "unknown")
            logger.error("Stripe error during %s: %s", operation, exc)
            raise ProviderTerminalError(
                f"Stripe {operation} failed", provider=self.name, details={"stripe_code": exc.code}
            ) from exc
