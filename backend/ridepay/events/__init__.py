"""Event primitives for payment-hold transitions."""

from .payment_events import (
    PaymentEventDispatcher,
    PaymentEventListener,
    PaymentHoldEvent,
    default_dispatcher,
    register_listener,
    unregister_listener,
)

__all__ = [
    "PaymentEventDispatcher",
    "PaymentEventListener",
    "PaymentHoldEvent",
    "default_dispatcher",
    "register_listener",
    "unregister_listener",
]
