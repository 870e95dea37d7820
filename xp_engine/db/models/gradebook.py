"""
Gradebook Models.

One row per assessment attempt, plus one row per passive resource for
completion and banked XP. The primary key is the natural result id, so
writing the same result twice is an upsert.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class AssessmentResultRecord(Base):
    """A gradebook result with its XP metadata."""

    __tablename__ = "assessment_results"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    resource_id: Mapped[str] = mapped_column(Text, nullable=False)
    course_id: Mapped[str] = mapped_column(Text, nullable=False)
    attempt_number: Mapped[int | None] = mapped_column(Integer)

    score: Mapped[float] = mapped_column(Float, nullable=False)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    total_count: Mapped[int] = mapped_column(Integer, default=0)

    # "metadata" is reserved on declarative classes
    result_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), default=dict
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_assessment_results_user_course", "user_id", "course_id"),
        Index("ix_assessment_results_user_resource", "user_id", "resource_id"),
    )

    def __repr__(self) -> str:
        return f"<AssessmentResultRecord {self.id} score={self.score}>"
