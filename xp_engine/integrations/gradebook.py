"""
SQL gradebook adapter.

Writes go through session.merge() keyed by the natural result id, so a
repeated save with the same arguments updates the row instead of
creating a duplicate. Failures propagate to the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from xp_engine.db.database import async_session_scope, get_session_factory
from xp_engine.db.models import AssessmentResultRecord
from xp_engine.ports import GradebookResult, make_result_id


def _to_result(record: AssessmentResultRecord) -> GradebookResult:
    return GradebookResult(
        result_id=record.id,
        user_id=record.user_id,
        resource_id=record.resource_id,
        course_id=record.course_id,
        score=record.score,
        correct_count=record.correct_count,
        total_count=record.total_count,
        metadata=dict(record.result_metadata or {}),
        attempt_number=record.attempt_number,
        recorded_at=record.recorded_at,
    )


class SqlGradebook:
    """GradebookPort backed by the assessment_results table."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        self.session_factory = session_factory or get_session_factory()

    async def save_result(
        self,
        resource_id: str,
        score: float,
        correct_count: int,
        total_count: int,
        user_id: str,
        course_id: str,
        metadata: dict[str, Any],
        *,
        attempt_number: int | None = None,
    ) -> str:
        result_id = make_result_id(user_id, resource_id, attempt_number)
        record = AssessmentResultRecord(
            id=result_id,
            user_id=user_id,
            resource_id=resource_id,
            course_id=course_id,
            attempt_number=attempt_number,
            score=score,
            correct_count=correct_count,
            total_count=total_count,
            result_metadata=metadata,
        )
        async with async_session_scope(self.session_factory) as session:
            await session.merge(record)
        logger.debug("Gradebook result {} saved (score={})", result_id, score)
        return result_id

    async def get_result(
        self,
        user_id: str,
        resource_id: str,
        attempt_number: int | None = None,
    ) -> GradebookResult | None:
        async with self.session_factory() as session:
            record = await session.get(
                AssessmentResultRecord, make_result_id(user_id, resource_id, attempt_number)
            )
        return _to_result(record) if record is not None else None

    async def get_all_results(self, user_id: str, course_id: str | None = None) -> list[GradebookResult]:
        stmt = select(AssessmentResultRecord).where(AssessmentResultRecord.user_id == user_id)
        if course_id is not None:
            stmt = stmt.where(AssessmentResultRecord.course_id == course_id)
        stmt = stmt.order_by(AssessmentResultRecord.recorded_at)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_result(row) for row in rows]
