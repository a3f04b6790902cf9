"""Provider lookup keyed by the ``provider`` tag carried on every PaymentRecord."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Union

from ...constants.payment_status import PaymentProvider
from ...core.config import Settings, settings as default_settings
from ...core.exceptions import ValidationException
from .base import HoldProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps a provider tag to its adapter; the tag is chosen once at hold creation."""

    def __init__(self, providers: Iterable[HoldProvider] = ()):
        self._providers: Dict[PaymentProvider, HoldProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: HoldProvider) -> None:
        self._providers[provider.provider] = provider

    def get(self, tag: Union[str, PaymentProvider]) -> HoldProvider:
        try:
            key = PaymentProvider(tag)
        except ValueError as exc:
            raise ValidationException(
                f"Unsupported payment provider: {tag}", code="UNSUPPORTED_PROVIDER"
            ) from exc
        provider = self._providers.get(key)
        if provider is None:
            raise ValidationException(
                f"Payment provider {key.value} is not configured",
                code="PROVIDER_NOT_CONFIGURED",
                details={"provider": key.value},
            )
        return provider

    def supports(self, tag: Union[str, PaymentProvider]) -> bool:
        try:
            return PaymentProvider(tag) in self._providers
        except ValueError:
            return False

    @property
    def configured(self) -> list[str]:
        return sorted(provider.value for provider in self._providers)


def build_provider_registry(config: Settings | None = None) -> ProviderRegistry:
    """Construct adapters for every provider whose credentials are configured."""
    cfg = config or default_settings
    registry = ProviderRegistry()

    if cfg.stripe_configured:
        from .stripe_provider import StripeHoldProvider, configure_stripe

        assert cfg.stripe_secret_key is not None
        configure_stripe(cfg.stripe_secret_key.get_secret_value())
        registry.register(StripeHoldProvider())

    if cfg.paypal_configured:
        from ...integrations.paypal_client import PayPalClient
        from .paypal_provider import PayPalHoldProvider

        assert cfg.paypal_client_id is not None and cfg.paypal_client_secret is not None
        client = PayPalClient(
            client_id=cfg.paypal_client_id,
            client_secret=cfg.paypal_client_secret,
            base_url=cfg.paypal_api_base,
            timeout=cfg.paypal_timeout_seconds,
        )
        registry.register(PayPalHoldProvider(client))

    if not registry.configured:
        logger.warning("No payment providers configured - hold operations will be rejected")
    else:
        logger.info("Payment providers configured: %s", ", ".join(registry.configured))
    return registry
