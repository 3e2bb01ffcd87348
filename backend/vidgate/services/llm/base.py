"""Abstract base class for vision model adapters.

Defines the async interface the scene scorer depends on: analyze one image
and return structured output validated against a caller-supplied schema.
"""

import json
from abc import ABC, abstractmethod
from typing import Type

from pydantic import BaseModel


class VisionAdapter(ABC):
    """Abstract base class for vision model providers.

    Implementations return validated Pydantic model instances using the
    caller-supplied schema class and raise on transport or validation errors
    once their own retries are exhausted.
    """

    @abstractmethod
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
        """Analyze an image and return structured output.

        Args:
            image_bytes: Raw bytes of the image to analyze.
            prompt: The analysis prompt describing what to extract.
            schema: Pydantic model class defining the expected output structure.
            mime_type: MIME type of the image (e.g., "image/jpeg", "image/png").
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            max_retries: Maximum number of retry attempts on failure.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...


def schema_instruction(schema: Type[BaseModel]) -> str:
    """Build a concise JSON schema instruction to append to the prompt.

    Produces a compact representation of the expected output structure that
    vision models follow more reliably than a raw JSON Schema passed as a
    request parameter.
    """
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Return ONLY the JSON object."
    )


def strip_code_fences(raw: str) -> str:
    """Remove a markdown code fence some models wrap JSON in."""
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    return stripped
