"""Variant → provider lookup."""

from typing import Mapping, Optional

import httpx
import structlog

from kycguard.core.config import Settings
from kycguard.providers.base import CapabilityProvider
from kycguard.providers.http import HttpCapabilityProvider
from kycguard.providers.schemas import ProviderVariant
from kycguard.providers.static import UnconfiguredCapabilityProvider

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """
    Resolves the provider for each detector variant.

    Variants without a registered provider resolve to an
    ``UnconfiguredCapabilityProvider``.
    """

    def __init__(
        self,
        providers: Optional[Mapping[ProviderVariant, CapabilityProvider]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._providers: dict[ProviderVariant, CapabilityProvider] = dict(providers or {})
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        """Build HTTP-backed providers when a detector service is configured."""
        if not settings.provider_base_url:
            logger.warning("providers_not_configured")
            return cls()

        headers = {
            "User-Agent": f"{settings.app_name}/{settings.app_version}",
            "Accept": "application/json",
        }
        if settings.provider_api_key:
            headers["X-API-Key"] = settings.provider_api_key

        client = httpx.AsyncClient(
            base_url=settings.provider_base_url,
            timeout=httpx.Timeout(settings.provider_timeout_seconds),
            headers=headers,
        )
        providers = {
            variant: HttpCapabilityProvider(
                variant, client, settings.provider_timeout_seconds
            )
            for variant in ProviderVariant
        }

        logger.info(
            "providers_configured",
            base_url=settings.provider_base_url,
            variants=[v.value for v in providers],
        )
        return cls(providers, http_client=client)

    def register(self, provider: CapabilityProvider) -> None:
        self._providers[provider.variant] = provider

    def get(self, variant: ProviderVariant) -> CapabilityProvider:
        provider = self._providers.get(variant)
        if provider is None:
            provider = UnconfiguredCapabilityProvider(variant)
        return provider

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
