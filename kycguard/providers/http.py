"""
HTTP Capability Provider.

Client for a remote detector service. Each variant is served at
``POST /detect/{variant}`` and answers with the uniform
``{score, label, artifacts, confidence}`` body.

Error Handling:
    - Timeouts become ProviderTimeoutError
    - Connection failures, 5xx and unparseable bodies become
      ProviderUnavailableError
    - 4xx responses are unavailable too; the request is never retried
"""

import httpx
import structlog
from pydantic import ValidationError

from kycguard.common.exceptions import ProviderTimeoutError, ProviderUnavailableError
from kycguard.providers.base import CapabilityProvider
from kycguard.providers.schemas import ProviderRequest, ProviderResponse, ProviderVariant

logger = structlog.get_logger(__name__)


class HttpCapabilityProvider(CapabilityProvider):
    """
    Detector variant backed by an HTTP endpoint.

    The ``httpx.AsyncClient`` is shared between variants and owned by the
    provider registry, which closes it.
    """

    def __init__(
        self,
        variant: ProviderVariant,
        client: httpx.AsyncClient,
        timeout_seconds: float,
    ):
        self.variant = variant
        self._client = client
        self._timeout = timeout_seconds

    async def analyze(self, request: ProviderRequest) -> ProviderResponse:
        path = f"/detect/{self.variant.value}"

        try:
            response = await self._client.post(
                path,
                json=request.model_dump(mode="json"),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "provider_http_timeout",
                variant=self.variant.value,
                session_id=request.session_id,
                error=str(e)[:200],
            )
            raise ProviderTimeoutError(self.variant.value, self._timeout) from e
        except httpx.HTTPError as e:
            logger.warning(
                "provider_http_error",
                variant=self.variant.value,
                session_id=request.session_id,
                error_type=type(e).__name__,
                error=str(e)[:200],
            )
            raise ProviderUnavailableError(self.variant.value, type(e).__name__) from e

        if response.status_code != 200:
            logger.warning(
                "provider_http_status",
                variant=self.variant.value,
                session_id=request.session_id,
                status_code=response.status_code,
            )
            raise ProviderUnavailableError(
                self.variant.value, f"http_{response.status_code}"
            )

        try:
            return ProviderResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning(
                "provider_bad_response",
                variant=self.variant.value,
                session_id=request.session_id,
                error=str(e)[:200],
            )
            raise ProviderUnavailableError(self.variant.value, "malformed_response") from e
