"""
Capability interface over the payment back ends.

Every adapter exposes the same authorize / capture / void / refund surface.
Capture, void and refund must be idempotent: the timeout sweep and a
user-triggered action can race on the same reference, so a second call
returns the first call's result instead of failing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Mapping, Optional

from ...constants.payment_status import PaymentProvider, PaymentStatus
from ...core.exceptions import (
    InvalidProviderReference,
    ProviderErrorCode,
    ProviderTerminalError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of ``authorize``.

    ``status`` is ``authorized`` for two-phase providers and ``requires_action``
    when an explicit authorize step is still outstanding.
    """

    external_ref: str
    status: str
    authorization_ref: Optional[str] = None


@dataclass(frozen=True)
class ProviderCapture:
    capture_ref: str
    amount_captured: Decimal
    already_captured: bool = False


@dataclass(frozen=True)
class ProviderRefund:
    refund_ref: str
    amount_refunded: Decimal
    already_refunded: bool = False


class HoldProvider(ABC):
    """Uniform hold/capture/void/refund surface for one payment provider."""

    provider: PaymentProvider
    requires_explicit_authorization: bool = False

    @property
    def name(self) -> str:
        return self.provider.value

    @abstractmethod
    def authorize(
        self,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        *,
        payment_method: Optional[str],
        idempotency_key: str,
    ) -> AuthorizationResult:
        """Reserve ``amount`` against the rider's payment method."""

    def complete_authorization(self, order_ref: str, *, idempotency_key: str) -> str:
        """Run the explicit authorize step and return the authorization reference."""
        raise ProviderTerminalError(
            f"{self.name} does not support an explicit authorization step",
            provider=self.name,
            error_code=ProviderErrorCode.INVALID_STATE,
        )

    @abstractmethod
    def capture(
        self,
        external_ref: str,
        amount: Optional[Decimal] = None,
        *,
        idempotency_key: str,
    ) -> ProviderCapture:
        """Capture a held authorization (full amount when ``amount`` is None)."""

    @abstractmethod
    def void(self, external_ref: str, *, idempotency_key: str) -> None:
        """Release a hold that was never captured."""

    @abstractmethod
    def refund(
        self,
        external_ref: str,
        amount: Decimal,
        reason: str,
        *,
        idempotency_key: str,
        currency: Optional[str] = None,
    ) -> ProviderRefund:
        """Reverse (part of) a completed capture."""

    def initial_status(self) -> str:
        if self.requires_explicit_authorization:
            return PaymentStatus.REQUIRES_ACTION.value
        return PaymentStatus.AUTHORIZED.value

    def _require_ref(self, value: Optional[str], label: str, *, prefix: Optional[str] = None) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidProviderReference(f"{self.name}: missing {label}")
        ref = value.strip()
        if prefix and not ref.startswith(prefix):
            raise InvalidProviderReference(f"{self.name}: malformed {label} {ref!r}")
        return ref

    def _require_positive(self, amount: Decimal) -> None:
        if amount is None or amount <= 0:
            raise ValueError(f"{self.name}: amount must be positive, got {amount!r}")
