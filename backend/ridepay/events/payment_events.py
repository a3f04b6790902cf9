"""Typed payment-hold events and dispatcher helpers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import Callable, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("ridepay.events.payments")

HoldOutcome = Literal["authorized", "captured", "voided", "refunded"]


class PaymentHoldEvent(BaseModel):
    """Emitted on every hold transition for an external notification collaborator."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    booking_id: str
    payment_id: str
    outcome: HoldOutcome
    amount: Decimal
    reason: Optional[str] = None
    provider: Optional[str] = None
    occurred_at: datetime


PaymentEventListener = Callable[[PaymentHoldEvent], None]


class PaymentEventDispatcher:
    """
    Registry of in-process listeners for payment-hold events.

    Listener failures are logged and never propagate: the money movement has
    already been committed by the time an event is dispatched.
    """

    def __init__(self, listeners: Sequence[PaymentEventListener] = ()) -> None:
        self._listeners: List[PaymentEventListener] = list(listeners)

    def register(self, listener: PaymentEventListener) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: PaymentEventListener) -> None:
        self._listeners = [existing for existing in self._listeners if existing != listener]

    def listeners(self) -> Sequence[PaymentEventListener]:
        return tuple(self._listeners)

    def dispatch(self, event: PaymentHoldEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Payment event listener error: %s", listener)
        logger.info(
            "payment_hold_event=%s booking_id=%s amount=%s reason=%s",
            event.outcome,
            event.booking_id,
            event.amount,
            event.reason,
        )


default_dispatcher = PaymentEventDispatcher()


def register_listener(listener: PaymentEventListener) -> None:
    """Register an in-process listener on the process-wide dispatcher."""

    default_dispatcher.register(listener)


def unregister_listener(listener: PaymentEventListener) -> None:
    default_dispatcher.unregister(listener)
