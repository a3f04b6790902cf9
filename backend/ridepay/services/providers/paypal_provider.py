"""
PayPal adapter: order, then explicit authorization, then capture.

``authorize`` only creates the order (the record enters ``requires_action``);
``complete_authorization`` yields the separate authorization id that capture
and void act on. Refunds act on the capture id. Provider rejections are
classified from PayPal's structured ``issue`` field.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, NoReturn, Optional

from ...constants.payment_status import PaymentProvider, PaymentStatus
from ...core.exceptions import (
    InvalidProviderReference,
    ProviderErrorCode,
    ProviderTerminalError,
    ProviderTransientError,
)
from ...integrations.paypal_client import PayPalClient, PayPalError
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...utils.money import format_amount, to_money
from .base import AuthorizationResult, HoldProvider, ProviderCapture, ProviderRefund

logger = logging.getLogger(__name__)

PAYPAL_ISSUE_CODES: Dict[str, ProviderErrorCode] = {
    "AUTHORIZATION_ALREADY_CAPTURED": ProviderErrorCode.ALREADY_CAPTURED,
    "PREVIOUSLY_CAPTURED": ProviderErrorCode.ALREADY_CAPTURED,
    "CANNOT_BE_VOIDED": ProviderErrorCode.ALREADY_CAPTURED,
    "AUTHORIZATION_VOIDED": ProviderErrorCode.ALREADY_VOIDED,
    "PREVIOUSLY_VOIDED": ProviderErrorCode.ALREADY_VOIDED,
    "CAPTURE_FULLY_REFUNDED": ProviderErrorCode.ALREADY_REFUNDED,
    "REFUND_AMOUNT_EXCEEDED": ProviderErrorCode.INVALID_STATE,
    "AUTHORIZATION_EXPIRED": ProviderErrorCode.AUTHORIZATION_EXPIRED,
    "ORDER_NOT_APPROVED": ProviderErrorCode.AUTHORIZATION_INCOMPLETE,
    "PAYER_ACTION_REQUIRED": ProviderErrorCode.AUTHORIZATION_INCOMPLETE,
    "INSTRUMENT_DECLINED": ProviderErrorCode.PAYMENT_DECLINED,
    "TRANSACTION_REFUSED": ProviderErrorCode.PAYMENT_DECLINED,
    "PAYER_CANNOT_PAY": ProviderErrorCode.PAYMENT_DECLINED,
    "ORDER_ALREADY_AUTHORIZED": ProviderErrorCode.INVALID_STATE,
    "UNPROCESSABLE_ENTITY": ProviderErrorCode.INVALID_STATE,
}

_MISSING_RESOURCE_ISSUES = {"INVALID_RESOURCE_ID", "RESOURCE_NOT_FOUND"}


def _first_payment(order: Mapping[str, Any], kind: str) -> Optional[Dict[str, Any]]:
    """Return the first ``authorizations`` / ``captures`` entry of an order's first purchase unit."""
    units = order.get("purchase_units") or []
    if not units:
        return None
    entries = (units[0].get("payments") or {}).get(kind) or []
    return entries[0] if entries else None


class PayPalHoldProvider(HoldProvider):
    """Order-then-authorize variant backed by :class:`PayPalClient`."""

    provider = PaymentProvider.PAYPAL
    requires_explicit_authorization = True

    def __init__(self, client: PayPalClient):
        self.client = client

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
        reference_id = metadata.get("booking_id") or "default"
        try:
            order = self.client.create_order(
                amount=format_amount(amount),
                currency=currency,
                reference_id=reference_id,
                custom_id=metadata.get("payment_id"),
                request_id=idempotency_key,
            )
        except PayPalError as exc:
            self._raise_classified("authorize", exc)
        order_id = order.get("id")
        if not order_id:
            raise ProviderTerminalError(
                "PayPal order response did not include an id",
                provider=self.name,
                error_code=ProviderErrorCode.UNKNOWN,
            )
        return AuthorizationResult(
            external_ref=str(order_id),
            status=PaymentStatus.REQUIRES_ACTION.value,
        )

    def complete_authorization(self, order_ref: str, *, idempotency_key: str) -> str:
        order_id = self._require_ref(order_ref, "order id")
        try:
            order = self.client.authorize_order(order_id, request_id=idempotency_key)
        except PayPalError as exc:
            if exc.issue != "ORDER_ALREADY_AUTHORIZED":
                self._raise_classified("complete_authorization", exc)
            logger.info("PayPal order %s already authorized", order_id)
            order = self._call("get_order", self.client.get_order, order_id)

        authorization = _first_payment(order, "authorizations")
        if not authorization or not authorization.get("id"):
            raise ProviderTerminalError(
                "PayPal order has no authorization",
                provider=self.name,
                error_code=ProviderErrorCode.AUTHORIZATION_INCOMPLETE,
                details={"order_id": order_id},
            )
        return str(authorization["id"])

    def capture(
        self,
        external_ref: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: str,
    ) -> ProviderCapture:
        authorization_id = self._require_ref(external_ref, "authorization id")
        kwargs: Dict[str, Any] = {"request_id": idempotency_key}
        if amount is not None:
            self._require_positive(amount)
            authorization = self._call(
                "get_authorization", self.client.get_authorization, authorization_id
            )
            kwargs["amount"] = format_amount(amount)
            kwargs["currency"] = (authorization.get("amount") or {}).get("currency_code")
        try:
            capture = self.client.capture_authorization(authorization_id, **kwargs)
        except PayPalError as exc:
            if PAYPAL_ISSUE_CODES.get(exc.issue or "") != ProviderErrorCode.ALREADY_CAPTURED:
                self._raise_classified("capture", exc)
            existing = self._find_capture(authorization_id)
            if existing is None:
                self._raise_classified("capture", exc)
            logger.info("PayPal authorization %s already captured", authorization_id)
            return self._capture_result(existing, already_captured=True)
        return self._capture_result(capture, already_captured=False)

    def void(self, external_ref: str, *, idempotency_key: str) -> None:
        authorization_id = self._require_ref(external_ref, "authorization id")
        try:
            self.client.void_authorization(authorization_id, request_id=idempotency_key)
        except PayPalError as exc:
            if PAYPAL_ISSUE_CODES.get(exc.issue or "") == ProviderErrorCode.ALREADY_VOIDED:
                logger.info("PayPal authorization %s already voided", authorization_id)
                return
            self._raise_classified("void", exc)

    def refund(
        self,
        external_ref: str,
        amount: Decimal,
        reason: str,
        *,
        idempotency_key: str,
        currency: Optional[str] = None,
    ) -> ProviderRefund:
        capture_id = self._require_ref(external_ref, "capture id")
        self._require_positive(amount)
        if not currency:
            capture = self._call("get_capture", self.client.get_capture, capture_id)
            currency = (capture.get("amount") or {}).get("currency_code")
        if not currency:
            raise InvalidProviderReference(f"{self.name}: cannot resolve currency for {capture_id}")
        try:
            refund = self.client.refund_capture(
                capture_id,
                amount=format_amount(amount),
                currency=currency,
                note=f"Ride booking refund ({reason})",
                request_id=idempotency_key,
            )
        except PayPalError as exc:
            self._raise_classified("refund", exc)
        refund_id = refund.get("id")
        if not refund_id:
            raise ProviderTerminalError(
                "PayPal refund response did not include an id",
                provider=self.name,
                error_code=ProviderErrorCode.UNKNOWN,
            )
        value = (refund.get("amount") or {}).get("value")
        return ProviderRefund(
            refund_ref=str(refund_id),
            amount_refunded=to_money(value) if value is not None else to_money(amount),
        )

    # ------------------------------------------------------------------ helpers

    def _find_capture(self, authorization_id: str) -> Optional[Dict[str, Any]]:
        """Locate the capture of an authorization through its parent order."""
        authorization = self._call(
            "get_authorization", self.client.get_authorization, authorization_id
        )
        related = (authorization.get("supplementary_data") or {}).get("related_ids") or {}
        order_id = related.get("order_id")
        if not order_id:
            return None
        order = self._call("get_order", self.client.get_order, order_id)
        return _first_payment(order, "captures")

    def _capture_result(self, capture: Mapping[str, Any], *, already_captured: bool) -> ProviderCapture:
        capture_id = capture.get("id")
        if not capture_id:
            raise ProviderTerminalError(
                "PayPal capture response did not include an id",
                provider=self.name,
                error_code=ProviderErrorCode.UNKNOWN,
            )
        value = (capture.get("amount") or {}).get("value", "0")
        return ProviderCapture(
            capture_ref=str(capture_id),
            amount_captured=to_money(value),
            already_captured=already_captured,
        )

    def _call(self, operation: str, fn: Any, *args: Any) -> Dict[str, Any]:
        try:
            return fn(*args)
        except PayPalError as exc:
            self._raise_classified(operation, exc)

    def _raise_classified(self, operation: str, exc: PayPalError) -> NoReturn:
        details = {"paypal_issue": exc.issue, "debug_id": exc.debug_id, "status_code": exc.status_code}
        if exc.is_transient:
            prometheus_metrics.record_provider_error(self.name, operation, "transient")
            raise ProviderTransientError(
                f"PayPal {operation} failed temporarily", provider=self.name, details=details
            ) from exc
        if exc.status_code == 404 or exc.issue in _MISSING_RESOURCE_ISSUES:
            prometheus_metrics.record_provider_error(self.name, operation, "invalid_reference")
            raise InvalidProviderReference(
                f"{self.name}: unknown reference during {operation} ({exc.issue})"
            ) from exc
        code = PAYPAL_ISSUE_CODES.get(exc.issue or "", ProviderErrorCode.UNKNOWN)
        prometheus_metrics.record_provider_error(self.name, operation, code.value)
        raise ProviderTerminalError(
            f"PayPal rejected {operation}: {exc.issue or exc.status_code}",
            provider=self.name,
            error_code=code,
            details=details,
        ) from exc
