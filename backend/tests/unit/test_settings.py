from pydantic import SecretStr, ValidationError
import pytest

from ridepay.core.config import Settings


def test_defaults():
    config = Settings(_env_file=None)

    assert config.hold_authorization_window_hours == 12
    assert config.default_currency == "cad"
    assert config.timeout_sweep_batch_size == 25
    assert config.reconciliation_enabled is True
    assert config.stripe_configured is False
    assert config.paypal_configured is False


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("HOLD_AUTHORIZATION_WINDOW_HOURS", "6")
    monkeypatch.setenv("DEFAULT_CURRENCY", " USD ")
    monkeypatch.setenv("ENVIRONMENT", "production")

    config = Settings(_env_file=None)

    assert config.hold_authorization_window_hours == 6
    assert config.default_currency == "usd"
    assert config.is_production is True


def test_invalid_currency():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, default_currency="dollars")


def test_window_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, hold_authorization_window_hours=0)


def test_paypal_needs_both_credentials():
    config = Settings(_env_file=None, paypal_client_id="client", paypal_client_secret=SecretStr(""))

    assert config.paypal_configured is False
