"""Minimal PayPal REST client for authorize-intent orders."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)

_TOKEN_REFRESH_MARGIN_SECONDS = 60.0


class PayPalError(RuntimeError):
    """Raised when the PayPal API responds with an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        issue: str | None = None,
        debug_id: str | None = None,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.issue = issue
        self.debug_id = debug_id
        self.error_body = error_body

    @property
    def is_transient(self) -> bool:
        """Network failures, rate limiting and 5xx responses are safe to retry."""
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


def _extract_issue(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    details = payload.get("details")
    if isinstance(details, list) and details:
        first = details[0]
        if isinstance(first, dict) and first.get("issue"):
            return str(first["issue"])
    name = payload.get("name") or payload.get("error")
    return str(name) if name else None


class PayPalClient:
    """Thin client for the PayPal Orders and Payments v2 APIs."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str | SecretStr,
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        secret_value = (
            client_secret.get_secret_value()
            if isinstance(client_secret, SecretStr)
            else client_secret
        )
        if not client_id or not secret_value:
            raise ValueError("PayPal client credentials must be provided")

        self._client_id = client_id
        self._client_secret = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._monotonic = monotonic
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    # ------------------------------------------------------------------ orders

    def create_order(
        self,
        *,
        amount: str,
        currency: str,
        reference_id: str,
        custom_id: str | None = None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        """Create an ``AUTHORIZE``-intent order for a single purchase unit."""

        unit: Dict[str, Any] = {
            "reference_id": reference_id,
            "amount": {"currency_code": currency.upper(), "value": amount},
        }
        if custom_id:
            unit["custom_id"] = custom_id
        body = {"intent": "AUTHORIZE", "purchase_units": [unit]}
        return self.request("POST", "/v2/checkout/orders", json_body=body, request_id=request_id)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/v2/checkout/orders/{order_id}")

    def authorize_order(self, order_id: str, *, request_id: str | None = None) -> Dict[str, Any]:
        """Authorize an approved order; the authorization id lives under purchase_units[0].payments."""

        return self.request(
            "POST", f"/v2/checkout/orders/{order_id}/authorize", json_body={}, request_id=request_id
        )

    # ------------------------------------------------------------ authorizations

    def get_authorization(self, authorization_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/v2/payments/authorizations/{authorization_id}")

    def capture_authorization(
        self,
        authorization_id: str,
        *,
        amount: str | None = None,
        currency: str | None = None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"final_capture": True}
        if amount is not None and currency is not None:
            body["amount"] = {"currency_code": currency.upper(), "value": amount}
        return self.request(
            "POST",
            f"/v2/payments/authorizations/{authorization_id}/capture",
            json_body=body,
            request_id=request_id,
        )

    def void_authorization(
        self, authorization_id: str, *, request_id: str | None = None
    ) -> Dict[str, Any]:
        return self.request(
            "POST",
            f"/v2/payments/authorizations/{authorization_id}/void",
            request_id=request_id,
        )

    # ------------------------------------------------------------------ captures

    def get_capture(self, capture_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/v2/payments/captures/{capture_id}")

    def refund_capture(
        self,
        capture_id: str,
        *,
        amount: str,
        currency: str,
        note: str | None = None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"amount": {"currency_code": currency.upper(), "value": amount}}
        if note:
            body["note_to_payer"] = note[:255]
        return self.request(
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            json_body=body,
            request_id=request_id,
        )

    # -------------------------------------------------------------------- plumbing

    def get_access_token(self) -> str:
        """Return a cached OAuth2 client-credentials token, refreshing it shortly before expiry."""

        with self._token_lock:
            now = self._monotonic()
            if self._token and now < self._token_expires_at - _TOKEN_REFRESH_MARGIN_SECONDS:
                return self._token

            payload = self._send(
                "POST",
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=httpx.BasicAuth(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
            token = payload.get("access_token")
            if not token:
                raise PayPalError("PayPal token response did not include an access token")
            self._token = str(token)
            self._token_expires_at = now + float(payload.get("expires_in") or 0)
            return self._token

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        """Perform an authenticated PayPal API request and return the parsed JSON payload."""

        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Accept": "application/json",
            "Prefer": "return=representation",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return self._send(method, path, json_body=json_body, params=params, headers=headers)

    def _send(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        with httpx.Client(timeout=self._timeout, transport=self._transport, auth=auth) as client:
            request = client.build_request(
                method,
                url,
                json=json_body,
                data=data,
                params=params,
                headers=headers,
            )
            logger.debug(
                "PayPalClient request",
                extra={"evt": "paypal_request", "method": request.method, "path": path},
            )
            try:
                response = client.send(request)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                try:
                    error_payload = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text
                issue = _extract_issue(error_payload)
                debug_id = (
                    error_payload.get("debug_id") if isinstance(error_payload, dict) else None
                ) or exc.response.headers.get("PayPal-Debug-Id")
                logger.error(
                    "PayPal API error %s for %s %s: issue=%s debug_id=%s",
                    status,
                    method,
                    path,
                    issue,
                    debug_id,
                )
                raise PayPalError(
                    f"PayPal API responded with status {status}",
                    status_code=status,
                    issue=issue,
                    debug_id=debug_id,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("PayPal request failure for %s %s: %s", method, path, str(exc))
                raise PayPalError("Failed to reach PayPal API") from exc

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from PayPal for %s %s: %s", method, path, response.text)
            raise PayPalError("Received malformed JSON from PayPal") from exc
