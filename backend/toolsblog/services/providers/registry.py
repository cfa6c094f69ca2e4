"""Payment provider registry"""
import logging
from typing import Dict, Iterable, Optional

from toolsblog.core.config import settings as default_settings
from toolsblog.core.exceptions import ValidationError
from toolsblog.services.providers.base import PaymentProvider
from toolsblog.services.providers.paddle_provider import PaddleProvider, build_paddle_client
from toolsblog.services.providers.stripe_provider import StripeProvider, build_stripe_client

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Adapters keyed by provider name"""

    def __init__(self, providers: Iterable[PaymentProvider]):
        self._providers: Dict[str, PaymentProvider] = {p.name: p for p in providers}

    def get(self, name: str) -> PaymentProvider:
        provider = self._providers.get((name or "").lower())
        if provider is None:
            raise ValidationError(f"Unsupported payment provider: {name}")
        return provider

    def names(self):
        return sorted(self._providers)


def build_providers(settings=None) -> ProviderRegistry:
    """Construct the production adapters from settings"""
    settings = settings or default_settings
    return ProviderRegistry([
        StripeProvider(
            build_stripe_client(settings.STRIPE_SECRET_KEY, settings.PROVIDER_TIMEOUT_SECONDS),
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        ),
        PaddleProvider(
            build_paddle_client(settings.PADDLE_API_KEY, settings.PADDLE_API_BASE, settings.PROVIDER_TIMEOUT_SECONDS),
            webhook_secret=settings.PADDLE_WEBHOOK_SECRET,
        ),
    ])


_registry: Optional[ProviderRegistry] = None


def get_providers() -> ProviderRegistry:
    """Dependency for FastAPI endpoints (lazy, built once per process)"""
    global _registry
    if _registry is None:
        _registry = build_providers()
        logger.info(f"Payment providers ready: {', '.join(_registry.names())}")
    return _registry
