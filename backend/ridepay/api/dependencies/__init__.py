# backend/ridepay/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .database import get_db
from .services import (
    get_cancellation_service,
    get_clock,
    get_driver_response_service,
    get_event_dispatcher,
    get_hold_service,
    get_provider_registry,
    get_timeout_service,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_cancellation_service",
    "get_clock",
    "get_driver_response_service",
    "get_event_dispatcher",
    "get_hold_service",
    "get_provider_registry",
    "get_timeout_service",
]
