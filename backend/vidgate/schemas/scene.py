"""Pydantic models describing scenes and what each scene is supposed to show.

A Scene is one shot in the project timeline. Its ExpectedDescription is the
yardstick every generated artifact is scored against.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field


class SceneType(str, Enum):
    HOOK = "hook"
    PROBLEM = "problem"
    SOLUTION = "solution"
    BENEFIT = "benefit"
    PROOF = "proof"
    CTA = "cta"
    STANDARD = "standard"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Framing(str, Enum):
    WIDE = "wide"
    MEDIUM = "medium"
    CLOSE_UP = "close_up"
    FULL_BODY = "full_body"


_FRAMING_ALIASES = {
    "wide": Framing.WIDE,
    "wide shot": Framing.WIDE,
    "establishing": Framing.WIDE,
    "medium": Framing.MEDIUM,
    "medium shot": Framing.MEDIUM,
    "close up": Framing.CLOSE_UP,
    "closeup": Framing.CLOSE_UP,
    "close-up": Framing.CLOSE_UP,
    "close_up": Framing.CLOSE_UP,
    "extreme close up": Framing.CLOSE_UP,
    "full body": Framing.FULL_BODY,
    "full-body": Framing.FULL_BODY,
    "full_body": Framing.FULL_BODY,
}


def normalize_framing(value: Any) -> Optional[Framing]:
    """Map a free-form framing label onto a Framing class.

    Returns None for empty or unrecognised labels.

    Examples:
        >>> normalize_framing("Close-Up")
        <Framing.CLOSE_UP: 'close_up'>
        >>> normalize_framing("dutch angle") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, Framing):
        return value
    key = str(value).strip().lower()
    return _FRAMING_ALIASES.get(key)


def _coerce_str_list(v: Any) -> list[str]:
    """Accept a single string where a list of strings is expected."""
    if v is None:
        return []
    if isinstance(v, str):
        return [v] if v.strip() else []
    return [str(item) for item in v]


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class ExpectedDescription(BaseModel):
    """What a scene's artifact must show."""

    narration: str = Field(default="", description="Voiceover text spoken over the scene")
    visual_direction: str = Field(
        default="", description="Generation prompt describing the intended visual"
    )
    required_elements: StrList = Field(
        default_factory=list, description="Visual elements that must be visible"
    )
    required_text: StrList = Field(
        default_factory=list,
        description="On-screen text or overlays that must appear in the artifact",
    )
    framing: Annotated[Optional[Framing], BeforeValidator(normalize_framing)] = Field(
        default=None, description="Required framing class (wide, close_up, full_body)"
    )
    content_tags: StrList = Field(
        default_factory=list,
        description="Content tags used for provider routing (person, product, food...)",
    )
    brand_notes: str = Field(default="", description="Brand constraints for the scene")


class Scene(BaseModel):
    """One shot in the project timeline."""

    id: str
    project_id: str
    index: int
    scene_type: SceneType = SceneType.STANDARD
    media_type: MediaType = MediaType.VIDEO
    expected_description: ExpectedDescription = Field(default_factory=ExpectedDescription)
    duration_seconds: float = 5.0
    aspect_ratio: str = "16:9"
    current_artifact_ref: Optional[str] = None
    current_provider: Optional[str] = None
    status: str = "pending"
