"""Tests for prompt complexity heuristics and prompt simplification."""

import pytest

from vidgate.services.prompt_complexity import (
    ComplexityCategory,
    analyze_prompt,
    categorize,
    detect_subjects,
    drastically_simplify,
    simplify_prompt,
)


@pytest.mark.parametrize(
    "score,category",
    [
        (0.0, ComplexityCategory.SIMPLE),
        (0.29, ComplexityCategory.SIMPLE),
        (0.3, ComplexityCategory.MODERATE),
        (0.5, ComplexityCategory.COMPLEX),
        (0.8, ComplexityCategory.IMPOSSIBLE),
        (1.0, ComplexityCategory.IMPOSSIBLE),
    ],
)
def test_categorize_thresholds(score, category):
    assert categorize(score) == category


def test_simple_prompt():
    analysis = analyze_prompt("A woman smiles at the camera")
    assert analysis.score == 0.0
    assert analysis.category == ComplexityCategory.SIMPLE
    assert analysis.warning is None
    assert not analysis.is_complex


def test_tiers_take_the_hardest_match_only():
    analysis = analyze_prompt("A chef slicing and cutting peppers")
    assert analysis.score == 0.4
    assert analysis.factors == ["action: slicing"]


def test_factors_accumulate_and_cap():
    prompt = "Hands slowly pouring translucent honey, then three drops fall from left to right"
    analysis = analyze_prompt(prompt)

    assert analysis.score == 1.0
    assert analysis.category == ComplexityCategory.IMPOSSIBLE
    assert "temporal sequence" in analysis.factors
    assert "stock footage" in analysis.warning


def test_counted_elements_add_small_increments():
    analysis = analyze_prompt("Two cups and three plates on a table")
    assert analysis.score == pytest.approx(0.1)
    assert "counted elements: 2" in analysis.factors


def test_subjects_drive_suggested_providers():
    analysis = analyze_prompt("Close-up of hands holding a product bottle")

    assert analysis.subjects == ["hand", "product"]
    assert analysis.suggested_providers[:2] == ["kling-2.5-turbo", "veo-3.1"]
    assert "luma-dream-machine" in analysis.suggested_providers


def test_detect_subjects_reads_tags():
    assert detect_subjects("A calm morning", ["forest"]) == ["nature"]


def test_words_are_matched_whole():
    # "matter" must not match the "matte" material keyword
    assert analyze_prompt("It does not matter").score == 0.0


def test_simplify_prompt_strips_precision_words():
    assert simplify_prompt("Hands slowly pour glossy honey from left to right") == "Hands pour honey"


def test_simplify_prompt_keeps_plain_prompt():
    assert simplify_prompt("A dog runs on the beach") == "A dog runs on the beach"


def test_drastically_simplify_uses_first_subject():
    assert drastically_simplify("Close-up of hands kneading dough") == (
        "hands working, natural lighting, cinematic quality"
    )
    assert drastically_simplify("An abstract swirl") == "scene, natural lighting, cinematic quality"
