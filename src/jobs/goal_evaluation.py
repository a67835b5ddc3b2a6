"""Bulk goal evaluation: the daily batch correction job.

Every non-cancelled goal is re-evaluated in its own session, at most
``concurrency`` at a time. One goal failing is logged and counted; the batch
carries on. Writes made before a cancellation stay committed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import SessionScope
from src.engine.goal_progress import GoalProgressEngine
from src.errors import ImpactMonitoringError
from src.models.common import GoalStatus, utc_now
from src.repositories.goals import GoalRepository

logger = structlog.get_logger(__name__)

# Builds an engine bound to one goal's session.
EngineFactory = Callable[[AsyncSession], GoalProgressEngine]


@dataclass
class BatchReport:
    """Outcome counts of one batch run."""

    correlation_id: str
    attempted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    failed_goal_ids: list[UUID] = field(default_factory=list)


class GoalEvaluationJob:
    def __init__(
        self,
        session_scope: SessionScope,
        build_engine: EngineFactory,
        *,
        concurrency: int = 4,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._session_scope = session_scope
        self._build_engine = build_engine
        self._concurrency = concurrency

    async def run(self, *, correlation_id: str) -> BatchReport:
        log = logger.bind(correlation_id=correlation_id)
        started = utc_now()

        async with self._session_scope() as session:
            goal_ids = await GoalRepository(session).list_ids_for_evaluation(
                [GoalStatus.CANCELLED.value]
            )

        report = BatchReport(correlation_id=correlation_id, attempted=len(goal_ids))
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(goal_id: UUID) -> None:
            async with semaphore:
                try:
                    changed = await self._evaluate(goal_id)
                except ImpactMonitoringError as exc:
                    report.failed += 1
                    report.failed_goal_ids.append(goal_id)
                    log.warning("goal_evaluation_failed", goal_id=str(goal_id),
                                error_code=exc.code, error=exc.message)
                    return
                except Exception:
                    report.failed += 1
                    report.failed_goal_ids.append(goal_id)
                    log.exception("goal_evaluation_error", goal_id=str(goal_id))
                    return
                if changed:
                    report.updated += 1
                else:
                    report.unchanged += 1

        async with asyncio.TaskGroup() as group:
            for goal_id in goal_ids:
                group.create_task(_one(goal_id))

        log.info(
            "goal_evaluation_completed",
            attempted=report.attempted,
            updated=report.updated,
            unchanged=report.unchanged,
            failed=report.failed,
            duration_seconds=(utc_now() - started).total_seconds(),
        )
        return report

    async def _evaluate(self, goal_id: UUID) -> bool:
        async with self._session_scope() as session:
            row = await GoalRepository(session).get(goal_id)
            if row is None:
                # Deleted since the id list was read.
                return False
            return await self._build_engine(session).evaluate(row)
