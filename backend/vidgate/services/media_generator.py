"""Media generator interface and an HTTP implementation.

Generators are capability-addressable: the caller names a provider id and
the generator routes the request to that provider's endpoint. Errors are
classified so the orchestrator can retry transient ones (429, 5xx, network)
and record everything else as a failed attempt.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from vidgate.config import ProvidersConfig
from vidgate.schemas.regeneration import GenerationOutput, GenerationRequest

logger = logging.getLogger(__name__)


class GenerationProviderError(Exception):
    """Raised when a provider cannot produce an artifact (quota, policy, bad input)."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class TransientProviderError(GenerationProviderError):
    """Raised for failures worth retrying: rate limits, 5xx, network errors."""


def is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying."""
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, (ConnectionError, OSError)) and not isinstance(exc, TimeoutError):
        return True
    return False


class MediaGenerator(ABC):
    """Produces one artifact per request."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationOutput:
        """Generate an artifact.

        Raises:
            GenerationProviderError: If the provider failed.
        """
        ...


class HttpMediaGenerator(MediaGenerator):
    """Posts generation requests to per-provider HTTP endpoints.

    Each endpoint accepts the JSON-serialised GenerationRequest and returns
    ``{"artifact_ref": "..."}`` (``"url"`` is accepted as an alias) once the
    artifact is ready.
    """

    def __init__(
        self,
        config: ProvidersConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 600.0,
    ) -> None:
        self._config = config
        self._client = client
        self._timeout = timeout_seconds

    async def generate(self, request: GenerationRequest) -> GenerationOutput:
        endpoint = self._config.endpoint_for(request.provider)
        payload = request.model_dump(mode="json")

        try:
            if self._client is not None:
                resp = await self._client.post(endpoint, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(endpoint, json=payload)
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"{request.provider} unreachable at {endpoint}: {e}", request.provider
            ) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientProviderError(
                f"{request.provider} returned HTTP {resp.status_code}", request.provider
            )
        if resp.status_code >= 400:
            raise GenerationProviderError(
                f"{request.provider} rejected request (HTTP {resp.status_code}): {resp.text[:200]}",
                request.provider,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise GenerationProviderError(
                f"{request.provider} returned a non-JSON response", request.provider
            ) from e

        artifact_ref = body.get("artifact_ref") or body.get("url") if isinstance(body, dict) else None
        if not artifact_ref:
            raise GenerationProviderError(
                f"{request.provider} response has no artifact reference", request.provider
            )

        logger.info(
            f"Scene {request.scene_id} generated via {request.provider} "
            f"({request.approach.value}): {artifact_ref}"
        )
        return GenerationOutput(artifact_ref=artifact_ref, provider=request.provider)
