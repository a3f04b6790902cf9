# backend/ridepay/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Tests override ``get_provider_registry`` and ``get_clock`` through
``app.dependency_overrides`` to run the routes against fake providers and a
fixed clock.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.timezone_utils import Clock, utc_now
from ...events.payment_events import PaymentEventDispatcher, default_dispatcher
from ...services.booking_cancellation_service import BookingCancellationService
from ...services.booking_timeout_service import BookingTimeoutService
from ...services.driver_response_service import DriverResponseService
from ...services.payment_hold_service import PaymentHoldService
from ...services.providers.registry import ProviderRegistry, build_provider_registry
from .database import get_db


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    """Process-wide provider registry built from settings."""
    return build_provider_registry()


def get_clock() -> Clock:
    return utc_now


def get_event_dispatcher() -> PaymentEventDispatcher:
    return default_dispatcher


def get_hold_service(
    db: Session = Depends(get_db),
    providers: ProviderRegistry = Depends(get_provider_registry),
    clock: Clock = Depends(get_clock),
    events: PaymentEventDispatcher = Depends(get_event_dispatcher),
) -> PaymentHoldService:
    return PaymentHoldService(db, providers, clock=clock, events=events)


def get_cancellation_service(
    db: Session = Depends(get_db),
    hold_service: PaymentHoldService = Depends(get_hold_service),
) -> BookingCancellationService:
    return BookingCancellationService(db, hold_service)


def get_driver_response_service(
    db: Session = Depends(get_db),
    hold_service: PaymentHoldService = Depends(get_hold_service),
) -> DriverResponseService:
    return DriverResponseService(db, hold_service)


def get_timeout_service(
    db: Session = Depends(get_db),
    hold_service: PaymentHoldService = Depends(get_hold_service),
) -> BookingTimeoutService:
    return BookingTimeoutService(db, hold_service)
