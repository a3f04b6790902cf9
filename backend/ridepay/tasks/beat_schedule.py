# backend/ridepay/tasks/beat_schedule.py
"""Celery Beat schedule for the payment-hold sweeps."""

from datetime import timedelta
from typing import Any

from ridepay.core.config import settings

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "process-booking-timeouts": {
        "task": "ridepay.tasks.hold_tasks.process_booking_timeouts",
        "schedule": timedelta(seconds=settings.timeout_sweep_interval_seconds),
        "options": {"queue": "payments", "priority": 8},
    },
    "reconcile-payment-holds": {
        "task": "ridepay.tasks.hold_tasks.reconcile_payment_holds",
        "schedule": timedelta(minutes=30),
        "options": {"queue": "payments", "priority": 5},
    },
}

# Environment-specific overrides
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "process-booking-timeouts": {
            "task": "ridepay.tasks.hold_tasks.process_booking_timeouts",
            "schedule": timedelta(minutes=1),
            "options": {"queue": "payments", "priority": 8},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Reconciliation is left out entirely when it is disabled in settings.
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    if not settings.reconciliation_enabled:
        base.pop("reconcile-payment-holds", None)
    return base
