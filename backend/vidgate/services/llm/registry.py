"""Provider registry for vision adapters.

Routes model IDs to the correct adapter implementation based on the model
ID prefix. Supports Vertex AI (gemini- prefix) and Ollama (ollama/ prefix).
"""

import logging
from typing import Optional

from vidgate.config import ScorerConfig, settings
from vidgate.services.llm.base import VisionAdapter

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    """Return True if the model ID uses the ollama/ prefix."""
    return model_id.startswith("ollama/")


def get_adapter(model_id: str, scorer_config: Optional[ScorerConfig] = None) -> VisionAdapter:
    """Return the appropriate vision adapter for the given model ID.

    Routing logic:
    - "ollama/*"    → OllamaAdapter (endpoint and key from scorer config)
    - anything else → VertexAIAdapter

    Args:
        model_id: Model identifier string (e.g., "gemini-2.5-flash",
                  "ollama/qwen2.5vl").
        scorer_config: Scorer settings; defaults to the global settings.

    Returns:
        Configured VisionAdapter instance ready for use.
    """
    cfg = scorer_config or settings.scorer

    if _is_ollama_model(model_id):
        from vidgate.services.llm.ollama_adapter import OllamaAdapter

        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            cfg.ollama_endpoint,
            bool(cfg.ollama_api_key),
        )
        return OllamaAdapter(
            model_id=model_id, base_url=cfg.ollama_endpoint, api_key=cfg.ollama_api_key
        )

    from vidgate.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug("Routing %s to VertexAIAdapter", model_id)
    return VertexAIAdapter(model_id=model_id)
