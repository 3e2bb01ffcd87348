"""Vertex AI adapter for vision scoring.

Wraps the google-genai client with location-aware routing and JSON output.
Uses tenacity for retry logic with configurable max_retries.

Authentication is handled via Application Default Credentials (ADC).
"""

import logging
import os
from typing import Optional, Type

from google import genai
from google.genai import types as genai_types
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from vidgate.config import settings
from vidgate.services.llm.base import VisionAdapter, schema_instruction, strip_code_fences

logger = logging.getLogger(__name__)

# Per-location client cache
_clients: dict[str, genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
}


def location_for_model(model_id: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.google_cloud.location


def get_vertex_client(location: Optional[str] = None) -> genai.Client:
    """Get or create a Vertex AI client for the given location.

    Clients are cached per location so repeated calls are cheap.
    """
    loc = location or settings.google_cloud.location

    if loc not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        if settings.google_cloud.project_id:
            os.environ["GOOGLE_CLOUD_PROJECT"] = settings.google_cloud.project_id

        _clients[loc] = genai.Client(
            vertexai=True,
            project=settings.google_cloud.project_id or None,
            location=loc,
        )

    return _clients[loc]


class VertexAIAdapter(VisionAdapter):
    """Vision adapter backed by Google Vertex AI (google-genai SDK).

    The scorer schema uses free-form maps, which Vertex response_schema does
    not accept, so the schema is described in the prompt and the response is
    requested as plain JSON.
    """

    def __init__(self, model_id: str) -> None:
        self._model_id = model_id

    async def analyze_image(
        self,
        image_bytes: bytes,
        prompt: str,
        schema: Type[BaseModel],
        *,
        mime_type: str = "image/jpeg",
        temperature: float = 0.2,
        max_retries: int = 3,
    ) -> BaseModel:
        """Analyze an image using Vertex AI vision capabilities.

        Args:
            image_bytes: Raw image bytes.
            prompt: Analysis prompt.
            schema: Pydantic model class for structured output.
            mime_type: Image MIME type.
            temperature: Sampling temperature.
            max_retries: Retry attempts on failure.

        Returns:
            Validated Pydantic model instance.
        """
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> BaseModel:
            client = get_vertex_client(location=location_for_model(self._model_id))
            image_part = genai_types.Part.from_bytes(
                data=image_bytes,
                mime_type=mime_type,
            )
            config = genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
            )
            response = await client.aio.models.generate_content(
                model=self._model_id,
                contents=[image_part, prompt + schema_instruction(schema)],
                config=config,
            )
            return schema.model_validate_json(strip_code_fences(response.text or ""))

        return await _call()
