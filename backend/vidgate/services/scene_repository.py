"""Scene repository: scenes, their current artifact and current verdict.

Only the latest verdict is stored per scene. A scene with no stored
verdict is reported as pending.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgate.db import models
from vidgate.schemas.quality import SceneVerdict
from vidgate.schemas.scene import ExpectedDescription, Scene

logger = logging.getLogger(__name__)


class SceneNotFound(Exception):
    """Raised when a scene id does not exist."""


class ProjectNotFound(Exception):
    """Raised when a project id does not exist."""


def _parse_uuid(value: str, exc: type[Exception]) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise exc(f"Invalid id: {value}") from e


class SceneRepository(ABC):
    """Access to scenes and their current verdicts."""

    @abstractmethod
    async def get(self, scene_id: str) -> Scene:
        """Raises SceneNotFound for unknown ids."""
        ...

    @abstractmethod
    async def list_scenes(self, project_id: str) -> list[Scene]:
        """Scenes ordered by index. Raises ProjectNotFound for unknown ids."""
        ...

    @abstractmethod
    async def policy_overrides(self, project_id: str) -> dict:
        ...

    @abstractmethod
    async def get_verdict(self, scene_id: str) -> SceneVerdict:
        """Current verdict, or a pending verdict if never evaluated."""
        ...

    @abstractmethod
    async def save_verdict(self, verdict: SceneVerdict) -> None:
        ...

    @abstractmethod
    async def replace_artifact(
        self, scene_id: str, artifact_ref: str, provider: Optional[str], verdict: SceneVerdict
    ) -> None:
        """Swap in a new current artifact together with its verdict."""
        ...

    @abstractmethod
    async def set_status(self, scene_id: str, status: str) -> None:
        ...

    async def verdicts_for_project(self, project_id: str) -> list[SceneVerdict]:
        scenes = await self.list_scenes(project_id)
        return [await self.get_verdict(s.id) for s in scenes]


class InMemorySceneRepository(SceneRepository):
    """Scene store kept in process memory."""

    def __init__(self) -> None:
        self._projects: dict[str, dict] = {}
        self._scenes: dict[str, Scene] = {}
        self._verdicts: dict[str, SceneVerdict] = {}

    def add_project(self, project_id: str, overrides: Optional[dict] = None) -> None:
        self._projects[project_id] = dict(overrides or {})

    def add_scene(self, scene: Scene, verdict: Optional[SceneVerdict] = None) -> Scene:
        self._projects.setdefault(scene.project_id, {})
        self._scenes[scene.id] = scene
        if verdict is not None:
            self._verdicts[scene.id] = verdict
            self._scenes[scene.id] = scene.model_copy(update={"status": verdict.status.value})
        return self._scenes[scene.id]

    async def get(self, scene_id: str) -> Scene:
        try:
            return self._scenes[scene_id]
        except KeyError:
            raise SceneNotFound(f"Scene not found: {scene_id}") from None

    async def list_scenes(self, project_id: str) -> list[Scene]:
        if project_id not in self._projects:
            raise ProjectNotFound(f"Project not found: {project_id}")
        scenes = [s for s in self._scenes.values() if s.project_id == project_id]
        return sorted(scenes, key=lambda s: s.index)

    async def policy_overrides(self, project_id: str) -> dict:
        if project_id not in self._projects:
            raise ProjectNotFound(f"Project not found: {project_id}")
        return dict(self._projects[project_id])

    async def get_verdict(self, scene_id: str) -> SceneVerdict:
        await self.get(scene_id)
        return self._verdicts.get(scene_id) or SceneVerdict.pending(scene_id)

    async def save_verdict(self, verdict: SceneVerdict) -> None:
        scene = await self.get(verdict.scene_id)
        self._verdicts[verdict.scene_id] = verdict
        self._scenes[scene.id] = scene.model_copy(update={"status": verdict.status.value})

    async def replace_artifact(
        self, scene_id: str, artifact_ref: str, provider: Optional[str], verdict: SceneVerdict
    ) -> None:
        scene = await self.get(scene_id)
        self._scenes[scene_id] = scene.model_copy(
            update={
                "current_artifact_ref": artifact_ref,
                "current_provider": provider,
                "status": verdict.status.value,
            }
        )
        self._verdicts[scene_id] = verdict

    async def set_status(self, scene_id: str, status: str) -> None:
        scene = await self.get(scene_id)
        self._scenes[scene_id] = scene.model_copy(update={"status": status})


def scene_from_row(row: models.Scene) -> Scene:
    return Scene(
        id=str(row.id),
        project_id=str(row.project_id),
        index=row.scene_index,
        scene_type=row.scene_type,
        media_type=row.media_type,
        expected_description=ExpectedDescription.model_validate(row.expected_description or {}),
        duration_seconds=row.duration_seconds,
        aspect_ratio=row.aspect_ratio,
        current_artifact_ref=row.current_artifact_ref,
        current_provider=row.current_provider,
        status=row.status,
    )


class SqlSceneRepository(SceneRepository):
    """Scene store backed by the projects and scenes tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _row(self, session: AsyncSession, scene_id: str) -> models.Scene:
        row = await session.get(models.Scene, _parse_uuid(scene_id, SceneNotFound))
        if row is None:
            raise SceneNotFound(f"Scene not found: {scene_id}")
        return row

    async def create_project(
        self,
        name: str,
        scenes: list[dict],
        policy_overrides: Optional[dict] = None,
    ) -> str:
        """Insert a project and its scenes.

        Args:
            name: Project name.
            scenes: Scene fields (scene_type, media_type, expected_description,
                duration_seconds, aspect_ratio, current_artifact_ref,
                current_provider). Index follows list order.
            policy_overrides: QualityPolicy fields overriding the defaults.

        Returns:
            The new project id.
        """
        async with self._session_factory() as session:
            project = models.Project(name=name, policy_overrides=policy_overrides or None)
            session.add(project)
            await session.flush()
            for index, data in enumerate(scenes):
                expected = ExpectedDescription.model_validate(data.get("expected_description", {}))
                session.add(
                    models.Scene(
                        project_id=project.id,
                        scene_index=index,
                        scene_type=data.get("scene_type", "standard"),
                        media_type=data.get("media_type", "video"),
                        expected_description=expected.model_dump(mode="json"),
                        duration_seconds=float(data.get("duration_seconds", 5.0)),
                        aspect_ratio=data.get("aspect_ratio", "16:9"),
                        current_artifact_ref=data.get("current_artifact_ref"),
                        current_provider=data.get("current_provider"),
                    )
                )
            await session.commit()
            logger.info(f"Created project {project.id} with {len(scenes)} scenes")
            return str(project.id)

    async def get(self, scene_id: str) -> Scene:
        async with self._session_factory() as session:
            return scene_from_row(await self._row(session, scene_id))

    async def list_scenes(self, project_id: str) -> list[Scene]:
        pid = _parse_uuid(project_id, ProjectNotFound)
        async with self._session_factory() as session:
            if await session.get(models.Project, pid) is None:
                raise ProjectNotFound(f"Project not found: {project_id}")
            result = await session.execute(
                select(models.Scene)
                .where(models.Scene.project_id == pid)
                .order_by(models.Scene.scene_index)
            )
            return [scene_from_row(row) for row in result.scalars().all()]

    async def policy_overrides(self, project_id: str) -> dict:
        async with self._session_factory() as session:
            project = await session.get(models.Project, _parse_uuid(project_id, ProjectNotFound))
            if project is None:
                raise ProjectNotFound(f"Project not found: {project_id}")
            return dict(project.policy_overrides or {})

    async def get_verdict(self, scene_id: str) -> SceneVerdict:
        async with self._session_factory() as session:
            row = await self._row(session, scene_id)
            if row.verdict is None:
                return SceneVerdict.pending(scene_id)
            return SceneVerdict.model_validate(row.verdict)

    async def save_verdict(self, verdict: SceneVerdict) -> None:
        async with self._session_factory() as session:
            row = await self._row(session, verdict.scene_id)
            row.verdict = verdict.model_dump(mode="json")
            row.status = verdict.status.value
            await session.commit()

    async def replace_artifact(
        self, scene_id: str, artifact_ref: str, provider: Optional[str], verdict: SceneVerdict
    ) -> None:
        async with self._session_factory() as session:
            row = await self._row(session, scene_id)
            row.current_artifact_ref = artifact_ref
            row.current_provider = provider
            row.verdict = verdict.model_dump(mode="json")
            row.status = verdict.status.value
            await session.commit()
        logger.info(f"Scene {scene_id} artifact replaced ({provider}): {artifact_ref}")

    async def set_status(self, scene_id: str, status: str) -> None:
        async with self._session_factory() as session:
            row = await self._row(session, scene_id)
            row.status = status
            await session.commit()
