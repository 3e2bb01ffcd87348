"""Tests for capability-based provider routing."""

import pytest

from vidgate.config import ProviderProfile, ProvidersConfig
from vidgate.schemas.scene import MediaType
from vidgate.services.provider_router import ProviderRouter


@pytest.fixture
def router(providers) -> ProviderRouter:
    return ProviderRouter(providers)


def test_strength_match_wins(router):
    decision = router.route("A person dancing", [], MediaType.VIDEO)
    assert decision.provider == "kling-2.5-turbo"
    assert decision.matched_strengths == ["person"]


def test_nature_prompt_routes_to_nature_provider(router):
    decision = router.route("Aerial landscape over a forest", ["nature"], MediaType.VIDEO)
    assert decision.provider == "veo-2"


def test_weakness_penalises_provider(router):
    decision = router.route("Hands on a product in the studio", [], MediaType.VIDEO)
    # luma matches product and studio but is penalised for hands
    assert decision.provider == "kling-2.5-turbo"
    assert "hand" in decision.matched_strengths


def test_ties_fall_back_to_configured_order(router):
    decision = router.route("An abstract swirl", [], MediaType.VIDEO)
    assert decision.provider == "kling-2.5-turbo"
    assert decision.score == 0.5


def test_avoided_providers_are_skipped(router):
    decision = router.route("A person walking", [], MediaType.VIDEO, avoid=["kling-2.5-turbo"])
    assert decision.provider == "kling-2.1"
    assert "kling-2.5-turbo" not in decision.candidates


def test_avoid_everything_still_returns_a_provider():
    router = ProviderRouter(ProvidersConfig(video_fallback_order=["a", "b"], profiles=[]))
    decision = router.route("anything", [], MediaType.VIDEO, avoid=["a", "b"])
    assert decision.provider == "a"


def test_suggested_bonus_breaks_ties(router):
    decision = router.route("An abstract swirl", [], MediaType.VIDEO, suggested=["veo-3.1"])
    assert decision.provider == "veo-3.1"


def test_image_media_uses_image_order(router):
    assert router.route("A bowl of food", [], MediaType.IMAGE).provider == "flux"


def test_no_providers_configured_raises():
    router = ProviderRouter(ProvidersConfig(video_fallback_order=[]))
    with pytest.raises(ValueError):
        router.route("x", [], MediaType.VIDEO)


def test_next_in_fallback_wraps_and_skips(router):
    assert router.next_in_fallback(MediaType.VIDEO, ["kling-2.5-turbo"], after="kling-2.5-turbo") == "runway-gen3"
    assert router.next_in_fallback(MediaType.VIDEO, [], after="hailuo-minimax") == "kling-2.5-turbo"
    assert router.next_in_fallback(MediaType.VIDEO, ["runway-gen3"], after="kling-2.5-turbo") == "veo-3.1"


def test_image_to_video_provider_prefers_capable(router):
    assert router.image_to_video_provider(MediaType.VIDEO) == "kling-2.5-turbo"
    assert router.image_to_video_provider(MediaType.VIDEO, exclude=["kling-2.5-turbo"]) == "runway-gen3"
    assert router.image_to_video_provider(MediaType.VIDEO, prefer="veo-3.1") == "veo-3.1"


def test_unknown_provider_gets_default_profile():
    config = ProvidersConfig(
        video_fallback_order=["custom", "kling-2.5-turbo"],
        profiles=[ProviderProfile(id="kling-2.5-turbo", strengths=["person"])],
    )
    decision = ProviderRouter(config).route("A person", [], MediaType.VIDEO)
    assert decision.provider == "kling-2.5-turbo"
