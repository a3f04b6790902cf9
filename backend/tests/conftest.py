# backend/tests/conftest.py
"""
Pytest configuration for the payment-hold service.

Every test gets a private in-memory SQLite database, a controllable clock and
in-memory providers. Nothing in the suite talks to Stripe or PayPal.
"""

import os
import sys

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("PAYPAL_CLIENT_ID", None)
os.environ.pop("PAYPAL_CLIENT_SECRET", None)

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from typing import Iterator, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tests.helpers.clock import FakeClock
from tests.helpers.fake_providers import FakeHoldProvider, FakePayPalProvider

from ridepay.core.config import settings
from ridepay.database import init_db
from ridepay.events.payment_events import PaymentEventDispatcher, PaymentHoldEvent
from ridepay.services.payment_hold_service import PaymentHoldService
from ridepay.services.providers.registry import ProviderRegistry

settings.is_testing = True
settings.scheduler_enabled = False


@pytest.fixture
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stripe_provider() -> FakeHoldProvider:
    return FakeHoldProvider()


@pytest.fixture
def paypal_provider() -> FakePayPalProvider:
    return FakePayPalProvider()


@pytest.fixture
def providers(stripe_provider: FakeHoldProvider, paypal_provider: FakePayPalProvider) -> ProviderRegistry:
    return ProviderRegistry([stripe_provider, paypal_provider])


@pytest.fixture
def recorded_events() -> List[PaymentHoldEvent]:
    return []


@pytest.fixture
def events(recorded_events: List[PaymentHoldEvent]) -> PaymentEventDispatcher:
    return PaymentEventDispatcher([recorded_events.append])


@pytest.fixture
def hold_service(
    db: Session,
    providers: ProviderRegistry,
    clock: FakeClock,
    events: PaymentEventDispatcher,
) -> PaymentHoldService:
    return PaymentHoldService(db, providers, clock=clock, events=events)
