"""
Celery tasks for payment-hold maintenance.

The same sweeps the in-process TimeoutScheduler runs, for deployments that
schedule them with Celery beat instead.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Optional, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from ridepay.core.config import settings
from ridepay.database import SessionLocal
from ridepay.services.booking_timeout_service import BookingTimeoutService
from ridepay.services.payment_hold_service import PaymentHoldService
from ridepay.services.payment_reconciliation_service import PaymentReconciliationService
from ridepay.services.providers.registry import build_provider_registry
from ridepay.tasks.celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class SweepCounts(TypedDict):
    processed: int
    errors: int
    reconciliation_required: int


class TimeoutJobResults(TypedDict):
    response_deadlines: SweepCounts
    expired_holds: SweepCounts
    processed_at: str


class ReconciliationJobResults(TypedDict):
    reconciled: int
    errors: int
    processed_at: str


logger = logging.getLogger(__name__)


@typed_task(bind=True, max_retries=3, name="ridepay.tasks.hold_tasks.process_booking_timeouts")
def process_booking_timeouts(self: Any, limit: Optional[int] = None) -> TimeoutJobResults:
    """
    Time out unanswered bookings and release expired holds.

    Runs every ``timeout_sweep_interval_seconds``. Per-booking failures are
    counted by the sweeps; only a failure of the whole run is retried.
    """
    db: Session = SessionLocal()
    try:
        hold_service = PaymentHoldService(db, build_provider_registry())
        timeouts = BookingTimeoutService(
            db, hold_service, batch_size=limit or settings.timeout_sweep_batch_size
        )
        deadlines = timeouts.sweep_response_deadlines()
        holds = timeouts.sweep_expired_holds()

        results: TimeoutJobResults = {
            "response_deadlines": {
                "processed": deadlines.processed,
                "errors": deadlines.errors,
                "reconciliation_required": deadlines.reconciliation_required,
            },
            "expired_holds": {
                "processed": holds.processed,
                "errors": holds.errors,
                "reconciliation_required": holds.reconciliation_required,
            },
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
        if deadlines.errors or holds.errors:
            logger.warning(
                f"Timeout job completed with {deadlines.errors + holds.errors} failures"
            )
        logger.info(
            f"Timeout job completed: {deadlines.processed} bookings timed out, "
            f"{holds.processed} expired holds released"
        )
        return results

    except Exception as exc:
        logger.error(f"Timeout job failed: {exc}")
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="ridepay.tasks.hold_tasks.reconcile_payment_holds")
def reconcile_payment_holds(self: Any, limit: Optional[int] = None) -> ReconciliationJobResults:
    """Bring holds and bookings back in line with their payment records."""
    db: Session = SessionLocal()
    try:
        result = PaymentReconciliationService(db).reconcile_drift(
            limit or settings.timeout_sweep_batch_size
        )
        logger.info(f"Reconciliation job completed: {result.processed} bookings reconciled")
        return {
            "reconciled": result.processed,
            "errors": result.errors,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        logger.error(f"Reconciliation job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()
