"""Vision model abstraction layer.

Provides a unified async interface for image analysis across providers
(Vertex AI and Ollama), used by the scene scorer.

Usage:
    from vidgate.services.llm import get_adapter, VisionAdapter

    adapter = get_adapter("gemini-2.5-flash")
    result = await adapter.analyze_image(image_bytes, prompt, ScorerResponse)
"""

from vidgate.services.llm.base import VisionAdapter
from vidgate.services.llm.registry import get_adapter

__all__ = ["VisionAdapter", "get_adapter"]
