"""
KYCGuard Capability Providers.

Detectors are external scoring units behind one contract:
- Document authenticity
- Deepfake face, GAN face, spoof/liveness
- Voice clone, lip-sync

Implementations:
- HttpCapabilityProvider: remote detector service (httpx)
- StaticCapabilityProvider: deterministic answers for tests and demos
- UnconfiguredCapabilityProvider: fail-safe placeholder
"""

from kycguard.providers.schemas import (
    ProviderVariant,
    ProviderRequest,
    ProviderResponse,
)
from kycguard.providers.base import CapabilityProvider
from kycguard.providers.static import (
    StaticCapabilityProvider,
    UnconfiguredCapabilityProvider,
)
from kycguard.providers.http import HttpCapabilityProvider
from kycguard.providers.registry import ProviderRegistry

__all__ = [
    # Schemas
    "ProviderVariant",
    "ProviderRequest",
    "ProviderResponse",
    # Contract
    "CapabilityProvider",
    # Implementations
    "StaticCapabilityProvider",
    "UnconfiguredCapabilityProvider",
    "HttpCapabilityProvider",
    "ProviderRegistry",
]
