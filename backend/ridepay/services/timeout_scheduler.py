# backend/ridepay/services/timeout_scheduler.py
"""
In-process timeout scheduler.

Runs the timeout sweeps on a single background thread: one tick immediately
after ``start()`` and then every ``timeout_sweep_interval_seconds``. Nothing
happens at import time; the FastAPI lifespan owns ``start()``/``stop()``.
Deployments that run Celery beat instead use ``ridepay.tasks.hold_tasks``.
"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.timezone_utils import Clock, utc_now
from ..database import SessionLocal
from ..events.payment_events import PaymentEventDispatcher
from .booking_timeout_service import BookingTimeoutService, SweepResult
from .payment_hold_service import PaymentHoldService
from .payment_reconciliation_service import PaymentReconciliationService
from .providers.registry import ProviderRegistry, build_provider_registry

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class TimeoutScheduler:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        providers: Optional[ProviderRegistry] = None,
        *,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        reconciliation_enabled: Optional[bool] = None,
        clock: Clock = utc_now,
        events: Optional[PaymentEventDispatcher] = None,
    ):
        self.session_factory = session_factory
        self._providers = providers
        self.interval_seconds = max(
            1.0, float(interval_seconds or settings.timeout_sweep_interval_seconds)
        )
        self.batch_size = max(1, int(batch_size or settings.timeout_sweep_batch_size))
        self.reconciliation_enabled = (
            settings.reconciliation_enabled
            if reconciliation_enabled is None
            else reconciliation_enabled
        )
        self.clock = clock
        self.events = events
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def providers(self) -> ProviderRegistry:
        if self._providers is None:
            self._providers = build_provider_registry()
        return self._providers

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the background thread. Returns False if it is already running."""
        with self._lock:
            if self.is_running:
                logger.warning("Booking timeout scheduler is already running")
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="ridepay-timeout-scheduler", daemon=True
            )
            self._thread.start()
        logger.info(
            "Booking timeout scheduler started",
            extra={"interval_seconds": self.interval_seconds, "batch_size": self.batch_size},
        )
        return True

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout)
            logger.info("Booking timeout scheduler stopped")

    def run_once(self) -> SweepResult:
        """Run one tick: both sweeps, then reconciliation when enabled."""
        result = SweepResult()
        result += self._with_session("response_deadlines", self._sweep_deadlines)
        result += self._with_session("expired_holds", self._sweep_holds)
        if self.reconciliation_enabled:
            result += self._with_session("reconciliation", self._reconcile)
        return result

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.interval_seconds):
                break

    def _with_session(
        self, name: str, sweep: Callable[[Session], SweepResult]
    ) -> SweepResult:
        db = self.session_factory()
        try:
            return sweep(db)
        except Exception:
            db.rollback()
            logger.exception("Timeout sweep failed", extra={"sweep": name})
            return SweepResult(errors=1)
        finally:
            db.close()

    def _timeout_service(self, db: Session) -> BookingTimeoutService:
        hold_service = PaymentHoldService(db, self.providers, clock=self.clock, events=self.events)
        return BookingTimeoutService(db, hold_service, batch_size=self.batch_size)

    def _sweep_deadlines(self, db: Session) -> SweepResult:
        return self._timeout_service(db).sweep_response_deadlines()

    def _sweep_holds(self, db: Session) -> SweepResult:
        return self._timeout_service(db).sweep_expired_holds()

    def _reconcile(self, db: Session) -> SweepResult:
        return PaymentReconciliationService(db, clock=self.clock).reconcile_drift(self.batch_size)
