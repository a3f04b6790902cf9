from .base import AuthorizationResult, HoldProvider, ProviderCapture, ProviderRefund
from .registry import ProviderRegistry, build_provider_registry

__all__ = [
    "AuthorizationResult",
    "HoldProvider",
    "ProviderCapture",
    "ProviderRefund",
    "ProviderRegistry",
    "build_provider_registry",
]
