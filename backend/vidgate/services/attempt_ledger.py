"""Attempt ledger: append-only regeneration history per scene.

The ordered attempts for a scene are the only input the strategy engine
uses to pick a ladder tier, so rows are never updated or deleted and
attempt numbers must be contiguous from 1.
"""

import logging
import uuid
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgate.db import models
from vidgate.schemas.quality import Assessment
from vidgate.schemas.regeneration import RegenerationAttempt

logger = logging.getLogger(__name__)


class AttemptConflict(Exception):
    """Raised when an append does not extend the history by exactly one."""


class AttemptLedger(ABC):
    """Append-only store of RegenerationAttempt records."""

    @abstractmethod
    async def history(self, scene_id: str) -> list[RegenerationAttempt]:
        """Return all attempts for a scene ordered by attempt number."""
        ...

    @abstractmethod
    async def append(self, attempt: RegenerationAttempt) -> RegenerationAttempt:
        """Record an attempt.

        Raises:
            AttemptConflict: If attempt_number is not len(history) + 1.
        """
        ...

    async def next_attempt_number(self, scene_id: str) -> int:
        return len(await self.history(scene_id)) + 1


class InMemoryAttemptLedger(AttemptLedger):
    """Ledger kept in process memory; used by tests and embedded callers."""

    def __init__(self) -> None:
        self._attempts: dict[str, list[RegenerationAttempt]] = {}

    async def history(self, scene_id: str) -> list[RegenerationAttempt]:
        return list(self._attempts.get(scene_id, []))

    async def append(self, attempt: RegenerationAttempt) -> RegenerationAttempt:
        rows = self._attempts.setdefault(attempt.scene_id, [])
        if attempt.attempt_number != len(rows) + 1:
            raise AttemptConflict(
                f"Scene {attempt.scene_id}: expected attempt {len(rows) + 1}, "
                f"got {attempt.attempt_number}"
            )
        rows.append(attempt)
        return attempt


def _to_row(attempt: RegenerationAttempt) -> models.RegenerationAttempt:
    return models.RegenerationAttempt(
        scene_id=uuid.UUID(attempt.scene_id),
        attempt_number=attempt.attempt_number,
        timestamp=attempt.timestamp,
        approach=attempt.approach.value,
        provider_used=attempt.provider_used,
        prompt_or_input_used=attempt.prompt_or_input_used,
        result_assessment=(
            attempt.result_assessment.model_dump(mode="json")
            if attempt.result_assessment is not None
            else None
        ),
        artifact_ref=attempt.artifact_ref,
        outcome=attempt.outcome.value,
        error=attempt.error,
    )


def attempt_from_row(row: models.RegenerationAttempt) -> RegenerationAttempt:
    return RegenerationAttempt(
        scene_id=str(row.scene_id),
        attempt_number=row.attempt_number,
        timestamp=row.timestamp,
        approach=row.approach,
        provider_used=row.provider_used,
        prompt_or_input_used=row.prompt_or_input_used or "",
        result_assessment=(
            Assessment.model_validate(row.result_assessment)
            if row.result_assessment is not None
            else None
        ),
        artifact_ref=row.artifact_ref,
        outcome=row.outcome,
        error=row.error,
    )


class SqlAttemptLedger(AttemptLedger):
    """Ledger backed by the regeneration_attempts table.

    The (scene_id, attempt_number) unique constraint rejects a second
    writer for the same slot even if the per-scene lock is bypassed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def history(self, scene_id: str) -> list[RegenerationAttempt]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.RegenerationAttempt)
                .where(models.RegenerationAttempt.scene_id == uuid.UUID(scene_id))
                .order_by(models.RegenerationAttempt.attempt_number)
            )
            return [attempt_from_row(row) for row in result.scalars().all()]

    async def append(self, attempt: RegenerationAttempt) -> RegenerationAttempt:
        expected = await self.next_attempt_number(attempt.scene_id)
        if attempt.attempt_number != expected:
            raise AttemptConflict(
                f"Scene {attempt.scene_id}: expected attempt {expected}, "
                f"got {attempt.attempt_number}"
            )
        async with self._session_factory() as session:
            session.add(_to_row(attempt))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise AttemptConflict(
                    f"Scene {attempt.scene_id}: attempt {attempt.attempt_number} already recorded"
                ) from e
        logger.debug(
            f"Recorded attempt {attempt.attempt_number} for scene {attempt.scene_id}: "
            f"{attempt.outcome.value}"
        )
        return attempt
