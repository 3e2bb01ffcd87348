"""Ollama adapter for vision scoring.

Connects via ollama.AsyncClient with optional auth headers. Images are sent
base64-encoded; output is requested with format='json' and a schema
description in the system prompt.

Note: format='json' is used instead of format=schema_dict because Ollama
Cloud does not reliably enforce JSON schema constraints.
"""

import base64
import logging
from typing import Optional, Type

from ollama import AsyncClient
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from vidgate.services.llm.base import VisionAdapter, schema_instruction, strip_code_fences

logger = logging.getLogger(__name__)


class OllamaAdapter(VisionAdapter):
    """Vision adapter backed by a local or cloud Ollama instance.

    Strips the "ollama/" prefix from model IDs before passing to the ollama
    library. Only works with vision-capable models (e.g., llava, qwen2.5vl).
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        """Initialize adapter for the given Ollama model.

        Args:
            model_id: Model identifier, optionally prefixed with "ollama/".
            base_url: Base URL of the Ollama server.
            api_key: Optional API key for authentication (cloud deployments).
        """
        self._ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

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
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> BaseModel:
            image_b64 = base64.b64encode(image_bytes).decode()
            messages = [
                {"role": "system", "content": schema_instruction(schema).lstrip()},
                {"role": "user", "content": prompt, "images": [image_b64]},
            ]
            response = await self._client.chat(
                model=self._ollama_model,
                messages=messages,
                format="json",
                options={"temperature": temperature},
                stream=False,
            )
            return schema.model_validate_json(strip_code_fences(response.message.content))

        return await _call()
