"""SQLAlchemy 2.0 ORM models for the quality gate."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Project(Base):
    """A video project: an ordered set of scenes rendered together."""
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text)
    policy_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class Scene(Base):
    """One shot in the project timeline plus its current verdict.

    ``verdict`` holds the latest SceneVerdict as JSON; older assessments live
    in regeneration_attempts.
    """
    __tablename__ = "scenes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("projects.id"), index=True)
    scene_index: Mapped[int] = mapped_column(Integer)
    scene_type: Mapped[str] = mapped_column(String(20), default="standard")
    media_type: Mapped[str] = mapped_column(String(10), default="video")
    expected_description: Mapped[dict] = mapped_column(JSON, default=dict)
    duration_seconds: Mapped[float] = mapped_column(Float, default=5.0)
    aspect_ratio: Mapped[str] = mapped_column(String(10), default="16:9")
    current_artifact_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    current_provider: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    verdict: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class RegenerationAttempt(Base):
    """Append-only attempt history row. Never updated or deleted."""
    __tablename__ = "regeneration_attempts"
    __table_args__ = (UniqueConstraint("scene_id", "attempt_number"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    scene_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("scenes.id"), index=True)
    attempt_number: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column()
    approach: Mapped[str] = mapped_column(String(30))
    provider_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    prompt_or_input_used: Mapped[str] = mapped_column(Text, default="")
    result_assessment: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    artifact_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(String(20))
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ReviewQueueEntry(Base):
    """A scene escalated to human review after automatic regeneration."""
    __tablename__ = "review_queue"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("projects.id"), index=True)
    scene_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("scenes.id"), index=True)
    reason: Mapped[str] = mapped_column(String(100))
    final_assessment: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    attempt_history: Mapped[list] = mapped_column(JSON, default=list)
    best_score: Mapped[int] = mapped_column(Integer, default=0)
    best_artifact_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_stock_query: Mapped[str] = mapped_column(Text, default="")
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column()
    resolved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
