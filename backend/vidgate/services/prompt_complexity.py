"""Prompt complexity heuristics.

Estimates how hard a visual direction is for current generators by
looking for specific hand actions, material properties, precise motion,
counted elements and temporal sequencing. The score decides whether the
first regeneration attempt is a plain retry or a simplified prompt.

Score components (capped at 1.0):
    action    very hard 0.4 / hard 0.3 / moderate 0.2
    material  very hard 0.4 / hard 0.3 / moderate 0.2
    motion    very hard 0.3 / hard 0.2 / moderate 0.1
    elements  0.05 per counted element, at most 0.2
    temporal  0.1 if the prompt describes a sequence
"""

import re
from enum import Enum

from pydantic import BaseModel, Field


class ComplexityCategory(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    IMPOSSIBLE = "impossible"


# ---------------------------------------------------------------------------
# Keyword tables: (very hard, hard, moderate)
# ---------------------------------------------------------------------------
SPECIFIC_ACTIONS = (
    ["pouring", "slicing", "typing", "writing", "threading", "tying", "juggling", "shuffling"],
    ["cutting", "stirring", "folding", "assembling", "unboxing", "peeling", "opening"],
    ["holding", "picking", "placing", "pointing", "waving", "walking", "sitting"],
)
MATERIAL_PROPERTIES = (
    ["translucent", "iridescent", "viscous", "refracting", "liquid splash"],
    ["glossy", "reflective", "transparent", "metallic", "glass", "shiny"],
    ["matte", "textured", "fabric", "wooden", "velvet"],
)
PRECISE_MOTION = (
    ["from left to right", "from right to left", "frame by frame", "in slow motion"],
    ["slowly", "carefully", "precisely", "exactly", "gradually"],
    ["quickly", "smoothly", "gently", "steadily"],
)
TEMPORAL_WORDS = ["then", "after", "before", "while", "followed by", "finally", "next"]

_TIER_WEIGHTS = {
    "action": (0.4, 0.3, 0.2),
    "material": (0.4, 0.3, 0.2),
    "motion": (0.3, 0.2, 0.1),
}

_NUMBER_WORDS = r"(?:\d+|two|three|four|five|six|seven|eight|nine|ten|several|multiple)"
_COUNTED_ELEMENT = re.compile(rf"\b{_NUMBER_WORDS}\s+\w+", re.IGNORECASE)

# Words removed by simplify_prompt
PRECISION_WORDS = [
    "slowly", "quickly", "carefully", "precisely", "exactly", "gradually",
    "from left to right", "from right to left", "frame by frame", "in slow motion",
    "translucent", "iridescent", "glossy", "matte", "viscous", "reflective",
]

# Subject keyword -> (providers best suited, short subject phrase)
SUBJECT_KEYWORDS: dict[str, tuple[list[str], str]] = {
    "hand": (["kling-2.5-turbo", "veo-3.1"], "hands working"),
    "food": (["veo-3.1", "kling-2.5-turbo", "flux"], "food preparation"),
    "product": (["luma-dream-machine", "runway-gen3", "flux"], "product shot"),
    "nature": (["hailuo-minimax", "veo-2"], "nature scene"),
    "person": (["kling-2.5-turbo", "kling-2.1", "flux"], "person"),
    "cinematic": (["runway-gen3", "veo-3.1"], "scene"),
}

_SUBJECT_SYNONYMS: dict[str, list[str]] = {
    "hand": ["hand", "hands", "finger", "fingers"],
    "food": ["food", "dish", "meal", "cooking", "kitchen", "recipe"],
    "product": ["product", "bottle", "package", "device", "packaging"],
    "nature": ["nature", "forest", "ocean", "mountain", "landscape", "garden", "sky"],
    "person": ["person", "man", "woman", "people", "customer", "child", "face"],
    "cinematic": ["cinematic", "dramatic", "film", "epic"],
}

WARNINGS = {
    ComplexityCategory.COMPLEX: (
        "Complex scene: generated results may need several attempts to match the description."
    ),
    ComplexityCategory.IMPOSSIBLE: (
        "This scene is highly specific and may not be achievable with AI generation. "
        "Consider simplifying the description or using stock footage."
    ),
}


class ComplexityAnalysis(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    category: ComplexityCategory
    factors: list[str] = Field(default_factory=list)
    subjects: list[str] = Field(default_factory=list)
    suggested_providers: list[str] = Field(default_factory=list)
    warning: str | None = None

    @property
    def is_complex(self) -> bool:
        return self.category in (ComplexityCategory.COMPLEX, ComplexityCategory.IMPOSSIBLE)


def _contains(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


def _tier_score(text: str, tiers: tuple[list[str], ...], weights: tuple[float, ...]) -> tuple[float, str | None]:
    for words, weight in zip(tiers, weights):
        for word in words:
            if _contains(text, word):
                return weight, word
    return 0.0, None


def categorize(score: float) -> ComplexityCategory:
    """Map a complexity score onto a category.

    Examples:
        >>> categorize(0.85).value
        'impossible'
        >>> categorize(0.3).value
        'moderate'
    """
    if score >= 0.8:
        return ComplexityCategory.IMPOSSIBLE
    if score >= 0.5:
        return ComplexityCategory.COMPLEX
    if score >= 0.3:
        return ComplexityCategory.MODERATE
    return ComplexityCategory.SIMPLE


def detect_subjects(prompt: str, tags: list[str] | None = None) -> list[str]:
    """Subject keywords found in the prompt or content tags, in table order."""
    text = " ".join([prompt, *(tags or [])]).lower()
    return [
        subject
        for subject, synonyms in _SUBJECT_SYNONYMS.items()
        if any(_contains(text, s) for s in synonyms)
    ]


def analyze_prompt(prompt: str, tags: list[str] | None = None) -> ComplexityAnalysis:
    """Estimate how hard a prompt is to generate faithfully."""
    text = prompt.lower()
    factors: list[str] = []
    score = 0.0

    for name, tiers in (
        ("action", SPECIFIC_ACTIONS),
        ("material", MATERIAL_PROPERTIES),
        ("motion", PRECISE_MOTION),
    ):
        value, word = _tier_score(text, tiers, _TIER_WEIGHTS[name])
        if word:
            score += value
            factors.append(f"{name}: {word}")

    elements = len(_COUNTED_ELEMENT.findall(text))
    if elements:
        score += min(elements * 0.05, 0.2)
        factors.append(f"counted elements: {elements}")

    if any(_contains(text, w) for w in TEMPORAL_WORDS):
        score += 0.1
        factors.append("temporal sequence")

    score = round(min(score, 1.0), 3)
    category = categorize(score)

    subjects = detect_subjects(prompt, tags)
    providers: list[str] = []
    for subject in subjects:
        for provider in SUBJECT_KEYWORDS[subject][0]:
            if provider not in providers:
                providers.append(provider)

    return ComplexityAnalysis(
        score=score,
        category=category,
        factors=factors,
        subjects=subjects,
        suggested_providers=providers,
        warning=WARNINGS.get(category),
    )


def simplify_prompt(prompt: str) -> str:
    """Strip precision and material words that generators struggle with.

    Examples:
        >>> simplify_prompt("Hands slowly pour glossy honey from left to right")
        'Hands pour honey'
    """
    result = prompt
    for phrase in sorted(PRECISION_WORDS, key=len, reverse=True):
        result = re.sub(rf"\b{re.escape(phrase)}\b", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s+,", ",", result)
    result = re.sub(r"\s{2,}", " ", result)
    return result.strip(" ,")


def drastically_simplify(prompt: str, tags: list[str] | None = None) -> str:
    """Reduce a prompt to its subject plus lighting.

    Examples:
        >>> drastically_simplify("A chef slices translucent fish on a marble counter, then plates it")
        'scene, natural lighting, cinematic quality'
        >>> drastically_simplify("Close-up of hands kneading dough")
        'hands working, natural lighting, cinematic quality'
    """
    subjects = detect_subjects(prompt, tags)
    phrase = SUBJECT_KEYWORDS[subjects[0]][1] if subjects else "scene"
    return f"{phrase}, natural lighting, cinematic quality"
