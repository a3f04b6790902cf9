"""
Unit tests for the PayPal hold adapter against a mocked REST client.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from ridepay.core.exceptions import (
    InvalidProviderReference,
    ProviderErrorCode,
    ProviderTerminalError,
    ProviderTransientError,
)
from ridepay.integrations.paypal_client import PayPalClient, PayPalError
from ridepay.services.providers.paypal_provider import PayPalHoldProvider


def _paypal_error(status_code, issue=None):
    return PayPalError("PayPal error", status_code=status_code, issue=issue, debug_id="dbg-1")


def _order(order_id="ORDER-1", authorizations=None, captures=None):
    return {
        "id": order_id,
        "purchase_units": [
            {"payments": {"authorizations": authorizations or [], "captures": captures or []}}
        ],
    }


@pytest.fixture
def client() -> MagicMock:
    return MagicMock(spec=PayPalClient)


@pytest.fixture
def provider(client) -> PayPalHoldProvider:
    return PayPalHoldProvider(client)


class TestAuthorize:
    def test_creates_order_and_requires_action(self, provider, client):
        client.create_order.return_value = {"id": "ORDER-1", "status": "CREATED"}

        result = provider.authorize(
            Decimal("40"),
            "cad",
            {"booking_id": "b1", "payment_id": "p1"},
            payment_method="paypal",
            idempotency_key="ridepay:p1:authorize",
        )

        assert result.external_ref == "ORDER-1"
        assert result.status == "requires_action"
        assert result.authorization_ref is None
        client.create_order.assert_called_once_with(
            amount="40.00",
            currency="cad",
            reference_id="b1",
            custom_id="p1",
            request_id="ridepay:p1:authorize",
        )

    def test_declined_instrument(self, provider, client):
        client.create_order.side_effect = _paypal_error(422, "INSTRUMENT_DECLINED")

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.authorize(Decimal("40"), "cad", {}, payment_method=None, idempotency_key="k")

        assert exc_info.value.error_code == ProviderErrorCode.PAYMENT_DECLINED

    def test_outage_is_transient(self, provider, client):
        client.create_order.side_effect = _paypal_error(503)

        with pytest.raises(ProviderTransientError):
            provider.authorize(Decimal("40"), "cad", {}, payment_method=None, idempotency_key="k")


class TestCompleteAuthorization:
    def test_returns_authorization_id(self, provider, client):
        client.authorize_order.return_value = _order(authorizations=[{"id": "AUTH-1"}])

        assert provider.complete_authorization("ORDER-1", idempotency_key="k") == "AUTH-1"
        client.authorize_order.assert_called_once_with("ORDER-1", request_id="k")

    def test_already_authorized_order_is_read_back(self, provider, client):
        client.authorize_order.side_effect = _paypal_error(422, "ORDER_ALREADY_AUTHORIZED")
        client.get_order.return_value = _order(authorizations=[{"id": "AUTH-7"}])

        assert provider.complete_authorization("ORDER-1", idempotency_key="k") == "AUTH-7"

    def test_order_without_authorization(self, provider, client):
        client.authorize_order.return_value = _order()

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.complete_authorization("ORDER-1", idempotency_key="k")

        assert exc_info.value.error_code == ProviderErrorCode.AUTHORIZATION_INCOMPLETE


class TestCapture:
    def test_full_capture(self, provider, client):
        client.capture_authorization.return_value = {
            "id": "CAP-1",
            "amount": {"value": "40.00", "currency_code": "CAD"},
        }

        result = provider.capture("AUTH-1", idempotency_key="ridepay:p1:capture")

        client.capture_authorization.assert_called_once_with(
            "AUTH-1", request_id="ridepay:p1:capture"
        )
        assert result.capture_ref == "CAP-1"
        assert result.amount_captured == Decimal("40.00")
        assert result.already_captured is False

    def test_partial_capture_uses_authorization_currency(self, provider, client):
        client.get_authorization.return_value = {"amount": {"currency_code": "CAD"}}
        client.capture_authorization.return_value = {"id": "CAP-2", "amount": {"value": "25.00"}}

        provider.capture("AUTH-1", Decimal("25"), idempotency_key="k")

        client.capture_authorization.assert_called_once_with(
            "AUTH-1", request_id="k", amount="25.00", currency="CAD"
        )

    def test_already_captured_is_resolved_through_order(self, provider, client):
        client.capture_authorization.side_effect = _paypal_error(
            422, "AUTHORIZATION_ALREADY_CAPTURED"
        )
        client.get_authorization.return_value = {
            "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}}
        }
        client.get_order.return_value = _order(
            captures=[{"id": "CAP-9", "amount": {"value": "40.00"}}]
        )

        result = provider.capture("AUTH-1", idempotency_key="k")

        assert result.already_captured is True
        assert result.capture_ref == "CAP-9"

    def test_expired_authorization(self, provider, client):
        client.capture_authorization.side_effect = _paypal_error(422, "AUTHORIZATION_EXPIRED")

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.capture("AUTH-1", idempotency_key="k")

        assert exc_info.value.error_code == ProviderErrorCode.AUTHORIZATION_EXPIRED

    def test_unknown_authorization(self, provider, client):
        client.capture_authorization.side_effect = _paypal_error(404, "INVALID_RESOURCE_ID")

        with pytest.raises(InvalidProviderReference):
            provider.capture("AUTH-404", idempotency_key="k")


class TestVoid:
    def test_void(self, provider, client):
        provider.void("AUTH-1", idempotency_key="ridepay:p1:void")

        client.void_authorization.assert_called_once_with("AUTH-1", request_id="ridepay:p1:void")

    def test_already_voided_is_noop(self, provider, client):
        client.void_authorization.side_effect = _paypal_error(422, "PREVIOUSLY_VOIDED")

        provider.void("AUTH-1", idempotency_key="k")

    def test_void_after_capture(self, provider, client):
        client.void_authorization.side_effect = _paypal_error(422, "CANNOT_BE_VOIDED")

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.void("AUTH-1", idempotency_key="k")

        assert exc_info.value.error_code == ProviderErrorCode.ALREADY_CAPTURED


class TestRefund:
    def test_refund_with_known_currency(self, provider, client):
        client.refund_capture.return_value = {"id": "REF-1", "amount": {"value": "30.00"}}

        result = provider.refund(
            "CAP-1", Decimal("30"), "passenger_cancelled", idempotency_key="k", currency="cad"
        )

        client.get_capture.assert_not_called()
        assert client.refund_capture.call_args.kwargs["amount"] == "30.00"
        assert result.refund_ref == "REF-1"
        assert result.amount_refunded == Decimal("30.00")

    def test_refund_looks_up_currency(self, provider, client):
        client.get_capture.return_value = {"amount": {"currency_code": "USD"}}
        client.refund_capture.return_value = {"id": "REF-2"}

        result = provider.refund("CAP-1", Decimal("12.5"), "timeout", idempotency_key="k")

        assert client.refund_capture.call_args.kwargs["currency"] == "USD"
        assert result.amount_refunded == Decimal("12.50")

    def test_fully_refunded_capture(self, provider, client):
        client.refund_capture.side_effect = _paypal_error(422, "CAPTURE_FULLY_REFUNDED")

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.refund("CAP-1", Decimal("30"), "timeout", idempotency_key="k", currency="cad")

        assert exc_info.value.error_code == ProviderErrorCode.ALREADY_REFUNDED

    def test_refund_beyond_remaining_balance_is_not_treated_as_refunded(self, provider, client):
        client.refund_capture.side_effect = _paypal_error(422, "REFUND_AMOUNT_EXCEEDED")

        with pytest.raises(ProviderTerminalError) as exc_info:
            provider.refund("CAP-1", Decimal("30"), "timeout", idempotency_key="k", currency="cad")

        assert exc_info.value.error_code == ProviderErrorCode.INVALID_STATE

    def test_missing_capture_reference(self, provider):
        with pytest.raises(InvalidProviderReference):
            provider.refund("", Decimal("30"), "timeout", idempotency_key="k", currency="cad")
