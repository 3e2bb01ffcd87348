"""Capability routing: pick the generation provider best suited to a scene.

Providers are scored by how many of their strength keywords appear in the
prompt and content tags, minus weakness matches, plus a bonus for
providers the complexity analyzer recommends. Ties fall back to the
configured fallback ordering, so routing is deterministic.
"""

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from vidgate.config import ProviderProfile, ProvidersConfig
from vidgate.schemas.scene import MediaType

logger = logging.getLogger(__name__)

BASE_SCORE = 0.5
STRENGTH_BONUS = 0.15
WEAKNESS_PENALTY = 0.2
SUGGESTED_BONUS = 0.1


class RoutingDecision(BaseModel):
    provider: str
    score: float
    matched_strengths: list[str] = Field(default_factory=list)
    matched_weaknesses: list[str] = Field(default_factory=list)
    candidates: list[str] = Field(default_factory=list)


def _matches(text: str, keywords: list[str]) -> list[str]:
    return [k for k in keywords if re.search(rf"\b{re.escape(k.lower())}s?\b", text)]


class ProviderRouter:
    """Deterministic provider selection over the configured profiles."""

    def __init__(self, config: ProvidersConfig) -> None:
        self.config = config

    def fallback_order(self, media_type: MediaType) -> list[str]:
        return self.config.fallback_order(media_type)

    def _profile(self, provider_id: str, media_type: MediaType) -> ProviderProfile:
        return self.config.profile(provider_id) or ProviderProfile(id=provider_id, media_type=media_type)

    def route(
        self,
        prompt: str,
        tags: list[str],
        media_type: MediaType,
        *,
        avoid: Optional[list[str]] = None,
        suggested: Optional[list[str]] = None,
        require_image_to_video: bool = False,
    ) -> RoutingDecision:
        """Choose the best provider for a prompt.

        Providers in ``avoid`` are skipped unless nothing else qualifies.

        Raises:
            ValueError: If no provider is configured for the media type.
        """
        order = self.fallback_order(media_type)
        if not order:
            raise ValueError(f"No providers configured for {media_type.value}")

        candidates = [
            p for p in order
            if not require_image_to_video or self._profile(p, media_type).image_to_video
        ] or order
        preferred = [p for p in candidates if p not in (avoid or [])] or candidates

        text = " ".join([prompt, *tags]).lower()
        best: Optional[RoutingDecision] = None
        for provider in preferred:
            profile = self._profile(provider, media_type)
            strengths = _matches(text, profile.strengths)
            weaknesses = _matches(text, profile.weaknesses)
            score = BASE_SCORE + STRENGTH_BONUS * len(strengths) - WEAKNESS_PENALTY * len(weaknesses)
            if suggested and provider in suggested:
                score += SUGGESTED_BONUS
            score = round(max(0.0, min(1.0, score)), 3)
            # strict > keeps the earlier provider in fallback order on ties
            if best is None or score > best.score:
                best = RoutingDecision(
                    provider=provider,
                    score=score,
                    matched_strengths=strengths,
                    matched_weaknesses=weaknesses,
                )

        logger.debug(f"Routed {media_type.value} prompt to {best.provider} (score={best.score})")
        return best.model_copy(update={"candidates": preferred})

    def next_in_fallback(
        self,
        media_type: MediaType,
        exclude: list[str],
        *,
        after: Optional[str] = None,
    ) -> str:
        """Next provider in the fallback ordering not in ``exclude``.

        Starts after ``after`` when given and wraps around. If every
        provider is excluded the first one after ``after`` is returned.
        """
        order = self.fallback_order(media_type)
        if not order:
            raise ValueError(f"No providers configured for {media_type.value}")
        start = order.index(after) + 1 if after in order else 0
        rotated = order[start:] + order[:start]
        for provider in rotated:
            if provider not in exclude:
                return provider
        return rotated[0]

    def image_to_video_provider(
        self,
        media_type: MediaType,
        *,
        exclude: Optional[list[str]] = None,
        prefer: Optional[str] = None,
    ) -> str:
        """Provider able to seed generation from a reference artifact."""
        capable = [
            p for p in self.fallback_order(media_type)
            if self._profile(p, media_type).image_to_video
        ]
        if prefer in capable and prefer not in (exclude or []):
            return prefer
        for provider in capable:
            if provider not in (exclude or []):
                return provider
        if capable:
            return capable[0]
        return self.next_in_fallback(media_type, exclude or [])
