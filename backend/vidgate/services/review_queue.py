"""Human review queue for scenes automatic regeneration could not fix.

At most one open entry exists per scene; escalating again refreshes it.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgate.db import models
from vidgate.schemas.quality import Assessment
from vidgate.schemas.regeneration import RegenerationAttempt, ReviewQueueEntry

logger = logging.getLogger(__name__)

ESCALATION_REASON = "auto_regeneration_failed"


class ReviewEntryNotFound(Exception):
    """Raised when a review queue entry id does not exist."""


def build_entry(
    project_id: str,
    scene_id: str,
    history: list[RegenerationAttempt],
    final_assessment: Optional[Assessment],
    *,
    reason: str = ESCALATION_REASON,
    suggested_stock_query: str = "",
) -> ReviewQueueEntry:
    """Assemble a queue entry, picking the best-scoring artifact in history."""
    scored = [a for a in history if a.artifact_ref and a.score is not None]
    best = max(scored, key=lambda a: a.score, default=None)
    return ReviewQueueEntry(
        id=str(uuid.uuid4()),
        project_id=project_id,
        scene_id=scene_id,
        reason=reason,
        final_assessment=final_assessment,
        attempt_history=list(history),
        best_score=best.score if best else 0,
        best_artifact_ref=best.artifact_ref if best else None,
        suggested_stock_query=suggested_stock_query,
        created_at=datetime.now(timezone.utc),
    )


class ReviewQueue(ABC):
    """Destination for escalated scenes."""

    @abstractmethod
    async def enqueue(self, entry: ReviewQueueEntry) -> ReviewQueueEntry:
        """Add an entry, replacing any open entry for the same scene."""
        ...

    @abstractmethod
    async def list_entries(
        self, project_id: Optional[str] = None, *, include_resolved: bool = False
    ) -> list[ReviewQueueEntry]:
        ...

    @abstractmethod
    async def resolve(self, entry_id: str, note: Optional[str] = None) -> ReviewQueueEntry:
        ...


class InMemoryReviewQueue(ReviewQueue):
    def __init__(self) -> None:
        self._entries: dict[str, ReviewQueueEntry] = {}

    async def enqueue(self, entry: ReviewQueueEntry) -> ReviewQueueEntry:
        for existing in list(self._entries.values()):
            if existing.scene_id == entry.scene_id and not existing.resolved:
                entry = entry.model_copy(update={"id": existing.id})
        self._entries[entry.id] = entry
        logger.info(f"Scene {entry.scene_id} queued for human review: {entry.reason}")
        return entry

    async def list_entries(
        self, project_id: Optional[str] = None, *, include_resolved: bool = False
    ) -> list[ReviewQueueEntry]:
        entries = [
            e for e in self._entries.values()
            if (project_id is None or e.project_id == project_id)
            and (include_resolved or not e.resolved)
        ]
        return sorted(entries, key=lambda e: e.created_at)

    async def resolve(self, entry_id: str, note: Optional[str] = None) -> ReviewQueueEntry:
        if entry_id not in self._entries:
            raise ReviewEntryNotFound(f"Review entry not found: {entry_id}")
        entry = self._entries[entry_id].model_copy(update={"resolved": True, "resolution_note": note})
        self._entries[entry_id] = entry
        return entry


def entry_from_row(row: models.ReviewQueueEntry) -> ReviewQueueEntry:
    return ReviewQueueEntry(
        id=str(row.id),
        project_id=str(row.project_id),
        scene_id=str(row.scene_id),
        reason=row.reason,
        final_assessment=(
            Assessment.model_validate(row.final_assessment) if row.final_assessment else None
        ),
        attempt_history=[RegenerationAttempt.model_validate(a) for a in row.attempt_history or []],
        best_score=row.best_score,
        best_artifact_ref=row.best_artifact_ref,
        suggested_stock_query=row.suggested_stock_query or "",
        resolved=row.resolved,
        resolution_note=row.resolution_note,
        created_at=row.created_at,
    )


class SqlReviewQueue(ReviewQueue):
    """Review queue backed by the review_queue table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def enqueue(self, entry: ReviewQueueEntry) -> ReviewQueueEntry:
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.ReviewQueueEntry).where(
                    models.ReviewQueueEntry.scene_id == uuid.UUID(entry.scene_id),
                    models.ReviewQueueEntry.resolved.is_(False),
                )
            )
            row = result.scalars().first()
            if row is None:
                row = models.ReviewQueueEntry(
                    id=uuid.UUID(entry.id),
                    project_id=uuid.UUID(entry.project_id),
                    scene_id=uuid.UUID(entry.scene_id),
                )
                session.add(row)
            row.reason = entry.reason
            row.final_assessment = (
                entry.final_assessment.model_dump(mode="json") if entry.final_assessment else None
            )
            row.attempt_history = [a.model_dump(mode="json") for a in entry.attempt_history]
            row.best_score = entry.best_score
            row.best_artifact_ref = entry.best_artifact_ref
            row.suggested_stock_query = entry.suggested_stock_query
            row.resolved = False
            row.created_at = entry.created_at
            await session.commit()
            logger.info(f"Scene {entry.scene_id} queued for human review: {entry.reason}")
            return entry_from_row(row)

    async def list_entries(
        self, project_id: Optional[str] = None, *, include_resolved: bool = False
    ) -> list[ReviewQueueEntry]:
        stmt = select(models.ReviewQueueEntry).order_by(models.ReviewQueueEntry.created_at)
        if project_id is not None:
            stmt = stmt.where(models.ReviewQueueEntry.project_id == uuid.UUID(project_id))
        if not include_resolved:
            stmt = stmt.where(models.ReviewQueueEntry.resolved.is_(False))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [entry_from_row(row) for row in result.scalars().all()]

    async def resolve(self, entry_id: str, note: Optional[str] = None) -> ReviewQueueEntry:
        try:
            key = uuid.UUID(entry_id)
        except ValueError:
            raise ReviewEntryNotFound(f"Review entry not found: {entry_id}") from None
        async with self._session_factory() as session:
            row = await session.get(models.ReviewQueueEntry, key)
            if row is None:
                raise ReviewEntryNotFound(f"Review entry not found: {entry_id}")
            row.resolved = True
            row.resolution_note = note
            row.resolved_at = datetime.now(timezone.utc)
            await session.commit()
            return entry_from_row(row)
