# backend/ridepay/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .core.config import is_running_tests, settings
from .core.exceptions import DomainException
from .database import SessionLocal, init_db
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import payment_holds as payment_holds_v1
from .services.timeout_scheduler import TimeoutScheduler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

API_TITLE = "ridepay"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables and own the timeout scheduler's start/stop."""
    logger.info(f"{API_TITLE} API starting up...")
    logger.info(f"Environment: {settings.environment}")

    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    init_db()

    scheduler: TimeoutScheduler | None = None
    if settings.scheduler_enabled and not settings.is_testing:
        scheduler = TimeoutScheduler(SessionLocal)
        scheduler.start()
    app.state.timeout_scheduler = scheduler

    yield

    logger.info(f"{API_TITLE} API shutting down...")
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Catch-all for domain errors raised outside the route-level handlers."""
    http_exc = exc.to_http_exception()
    if http_exc.status_code >= 500:
        logger.error(
            f"Unhandled domain error on {request.url.path}: {exc.message}",
            extra={"code": exc.code, "details": exc.details},
        )
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(payment_holds_v1.router, prefix="/bookings")
app.include_router(api_v1)


@app.get("/health", include_in_schema=False)
def health_check() -> Dict[str, str]:
    return {"status": "healthy", "service": API_TITLE, "environment": settings.environment}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
