"""
Deterministic providers.

``StaticCapabilityProvider`` gives fixed, reproducible answers; it is what
tests and local demos plug in. ``UnconfiguredCapabilityProvider`` stands in for any
variant without a configured backend and always fails, so an unconfigured
deployment degrades every check instead of passing it.
"""

import asyncio
from typing import Optional

from kycguard.common.exceptions import ProviderError, ProviderUnavailableError
from kycguard.providers.base import CapabilityProvider
from kycguard.providers.schemas import ProviderRequest, ProviderResponse, ProviderVariant


class StaticCapabilityProvider(CapabilityProvider):
    """Returns a fixed response (or raises a fixed error) for every request."""

    def __init__(
        self,
        variant: ProviderVariant,
        response: Optional[ProviderResponse] = None,
        error: Optional[ProviderError] = None,
        delay_seconds: float = 0.0,
    ):
        if response is None and error is None:
            response = ProviderResponse(score=0.0, confidence=1.0)
        self.variant = variant
        self._response = response
        self._error = error
        self._delay = delay_seconds
        self.requests: list[ProviderRequest] = []

    @classmethod
    def scoring(
        cls,
        variant: ProviderVariant,
        score: float,
        label: Optional[str] = None,
        artifacts: Optional[set[str]] = None,
        confidence: float = 0.9,
        delay_seconds: float = 0.0,
    ) -> "StaticCapabilityProvider":
        """Shortcut for a provider that always answers with ``score``."""
        return cls(
            variant,
            response=ProviderResponse(
                score=score,
                label=label,
                artifacts=frozenset(artifacts or ()),
                confidence=confidence,
            ),
            delay_seconds=delay_seconds,
        )

    @classmethod
    def failing(
        cls,
        variant: ProviderVariant,
        reason: str = "unavailable",
    ) -> "StaticCapabilityProvider":
        """Shortcut for a provider that is always unavailable."""
        return cls(variant, error=ProviderUnavailableError(variant.value, reason))

    async def analyze(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._response

    @property
    def call_count(self) -> int:
        return len(self.requests)


class UnconfiguredCapabilityProvider(CapabilityProvider):
    """Placeholder for a variant with no backend."""

    def __init__(self, variant: ProviderVariant):
        self.variant = variant

    async def analyze(self, request: ProviderRequest) -> ProviderResponse:
        raise ProviderUnavailableError(self.variant.value, "not configured")
