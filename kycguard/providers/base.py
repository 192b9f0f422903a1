"""Capability provider contract."""

from abc import ABC, abstractmethod

from kycguard.providers.schemas import ProviderRequest, ProviderResponse, ProviderVariant


class CapabilityProvider(ABC):
    """
    A pluggable scoring unit for one detector variant.

    Implementations either return a ``ProviderResponse`` or raise
    ``ProviderUnavailableError`` / ``ProviderTimeoutError``. Timeouts are
    also enforced by the caller, so a provider that hangs is cut off.
    """

    variant: ProviderVariant

    @abstractmethod
    async def analyze(self, request: ProviderRequest) -> ProviderResponse:
        """Score the referenced evidence."""

    async def aclose(self) -> None:
        """Release any held resources."""
        return None
