"""Scene scorer oracle: rate a generated artifact against its scene description.

The scorer is an external, unreliable collaborator. Implementations raise
ScoringOracleError for anything that prevents a usable response (artifact
not loadable, model timeout, malformed JSON); the scene evaluator decides
what to do about it.
"""

import asyncio
import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from pydantic import ValidationError

from vidgate.schemas.llm_vision import ScorerResponse
from vidgate.schemas.scene import ExpectedDescription
from vidgate.services.llm.base import VisionAdapter

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".avi"}


class ScoringOracleError(Exception):
    """Raised when the scorer times out or returns unusable output."""


class SceneScorer(ABC):
    """Oracle returning structured scores for one artifact."""

    @abstractmethod
    async def score(
        self, artifact_ref: str, expected: ExpectedDescription
    ) -> ScorerResponse:
        """Score an artifact.

        Raises:
            ScoringOracleError: If no usable response could be produced.
        """
        ...


# ---------------------------------------------------------------------------
# Artifact loading
# ---------------------------------------------------------------------------

def _extract_middle_frame(video_path: str) -> bytes:
    """Read the middle frame of a video and return it as JPEG bytes."""
    import cv2  # noqa: PLC0415

    cap = cv2.VideoCapture(video_path)
    try:
        if not cap.isOpened():
            raise ScoringOracleError(f"Cannot open video: {video_path}")
        frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        cap.set(cv2.CAP_PROP_POS_FRAMES, max(0, frame_count // 2))
        ok, frame = cap.read()
        if not ok:
            raise ScoringOracleError(f"Cannot read frame from video: {video_path}")
        ok, buf = cv2.imencode(".jpg", frame)
        if not ok:
            raise ScoringOracleError(f"Cannot encode frame from video: {video_path}")
        return buf.tobytes()
    finally:
        cap.release()


async def load_artifact_image(
    artifact_ref: str,
    tmp_dir: Optional[Path] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[bytes, str]:
    """Load an artifact as image bytes suitable for a vision model.

    ``artifact_ref`` may be an http(s) URL or a local path. Videos are
    reduced to their middle frame (requires OpenCV).

    Returns:
        Tuple of (image bytes, mime type).

    Raises:
        ScoringOracleError: If the artifact cannot be loaded.
    """
    suffix = Path(artifact_ref.split("?", 1)[0]).suffix.lower()

    if artifact_ref.startswith(("http://", "https://")):
        try:
            if client is None:
                async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as c:
                    resp = await c.get(artifact_ref)
            else:
                resp = await client.get(artifact_ref)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ScoringOracleError(f"Cannot download artifact {artifact_ref}: {e}") from e
        data = resp.content
        if suffix not in VIDEO_EXTENSIONS:
            mime = resp.headers.get("content-type", "image/jpeg").split(";")[0]
            return data, mime
        tmp = (tmp_dir or Path("tmp")) / f"artifact-{uuid.uuid4().hex}{suffix}"
        tmp.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(data)
        try:
            frame = await asyncio.to_thread(_extract_middle_frame, str(tmp))
        except ImportError as e:
            raise ScoringOracleError("opencv is required to score video artifacts") from e
        finally:
            tmp.unlink(missing_ok=True)
        return frame, "image/jpeg"

    path = Path(artifact_ref)
    if not path.exists():
        raise ScoringOracleError(f"Artifact not found: {artifact_ref}")

    if suffix in VIDEO_EXTENSIONS:
        try:
            frame = await asyncio.to_thread(_extract_middle_frame, str(path))
        except ImportError as e:
            raise ScoringOracleError("opencv is required to score video artifacts") from e
        return frame, "image/jpeg"

    mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return path.read_bytes(), mime


# ---------------------------------------------------------------------------
# Vision model scorer
# ---------------------------------------------------------------------------

def build_scoring_prompt(expected: ExpectedDescription) -> str:
    """Describe the scene's intent for the vision model."""
    lines = [
        "You are a strict quality reviewer for a marketing video.",
        "Score this frame against the intended scene on each dimension from 0 to 100:",
        "content_match, framing, technical_quality, brand_compliance, coherence.",
        "",
        f"Intended visual: {expected.visual_direction or 'not specified'}",
    ]
    if expected.narration:
        lines.append(f"Narration over this scene: {expected.narration}")
    if expected.required_elements:
        lines.append(f"Required elements: {', '.join(expected.required_elements)}")
    if expected.required_text:
        quoted = ", ".join(f'"{t}"' for t in expected.required_text)
        lines.append(f"Required on-screen text: {quoted}")
    if expected.framing:
        lines.append(f"Required framing: {expected.framing.value}")
    if expected.brand_notes:
        lines.append(f"Brand notes: {expected.brand_notes}")
    lines += [
        "",
        "List every required element you can actually see in matched_elements.",
        "Prefix visible text with 'text:' and overlays with 'overlay:'.",
        "Report garbled or hallucinated text as an ai_text_detected issue and fake",
        "UI elements as ai_ui_detected. Report the framing you observe.",
        "If the frame has problems, suggest an improved generation prompt.",
    ]
    return "\n".join(lines)


class VisionSceneScorer(SceneScorer):
    """SceneScorer backed by a vision LLM adapter."""

    def __init__(
        self,
        adapter: VisionAdapter,
        *,
        tmp_dir: Optional[Path] = None,
        temperature: float = 0.2,
        max_retries: int = 2,
    ) -> None:
        self._adapter = adapter
        self._tmp_dir = tmp_dir
        self._temperature = temperature
        self._max_retries = max_retries

    async def score(
        self, artifact_ref: str, expected: ExpectedDescription
    ) -> ScorerResponse:
        image_bytes, mime_type = await load_artifact_image(artifact_ref, self._tmp_dir)
        try:
            result = await self._adapter.analyze_image(
                image_bytes,
                build_scoring_prompt(expected),
                ScorerResponse,
                mime_type=mime_type,
                temperature=self._temperature,
                max_retries=self._max_retries,
            )
        except ValidationError as e:
            raise ScoringOracleError(f"Malformed scorer response: {e}") from e
        except Exception as e:
            raise ScoringOracleError(f"Vision scorer failed: {e}") from e
        logger.debug(f"Scored {artifact_ref}: {result.dimension_scores}")
        return result
