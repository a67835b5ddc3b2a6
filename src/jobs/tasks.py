"""Celery tasks for scheduled goal evaluation.

When CELERY_BROKER_URL is configured, beat triggers ``evaluate_all_goals``
daily at GOAL_EVALUATION_HOUR_UTC and a worker runs it.
When empty (dev/test), run_goal_evaluation() is called inline.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import get_settings
from src.db.session import SessionScope, session_scope
from src.engine.goal_progress import GoalProgressEngine
from src.jobs.goal_evaluation import BatchReport, GoalEvaluationJob
from src.models.common import new_uuid7
from src.repositories.goals import GoalRepository
from src.timeseries.aggregator import TimeSeriesAggregator
from src.timeseries.store import SqlTimeSeriesStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Celery app (lazy init - only created if broker URL is configured)
# ---------------------------------------------------------------------------

_celery_app = None


def get_celery_app():
    """Get or create the Celery application with its beat schedule."""
    global _celery_app
    if _celery_app is None:
        from celery import Celery
        from celery.schedules import crontab

        settings = get_settings()
        broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
        _celery_app = Celery(
            "impact_monitoring",
            broker=broker_url,
            backend=broker_url,
        )
        _celery_app.conf.task_serializer = "json"
        _celery_app.conf.result_serializer = "json"
        _celery_app.conf.timezone = "UTC"
        _celery_app.conf.beat_schedule = {
            "evaluate-all-goals-daily": {
                "task": "impact_monitoring.evaluate_all_goals",
                "schedule": crontab(hour=settings.GOAL_EVALUATION_HOUR_UTC, minute=0),
            },
        }
        _celery_app.task(name="impact_monitoring.evaluate_all_goals")(evaluate_all_goals)
    return _celery_app


# ---------------------------------------------------------------------------
# Shared evaluation entry point
# ---------------------------------------------------------------------------


def build_goal_engine(session: AsyncSession) -> GoalProgressEngine:
    """Engine wired to SQL-backed goal and time-series stores on ``session``."""
    settings = get_settings()
    aggregator = TimeSeriesAggregator(
        SqlTimeSeriesStore(session),
        measurement=settings.TIMESERIES_MEASUREMENT,
        default_timeout=settings.AGGREGATION_TIMEOUT_SECONDS,
    )
    return GoalProgressEngine(GoalRepository(session), aggregator)


async def run_goal_evaluation(
    correlation_id: str,
    *,
    scope: SessionScope = session_scope,
) -> BatchReport:
    """Evaluate every goal once. Called by the Celery task and inline."""
    settings = get_settings()
    job = GoalEvaluationJob(
        scope,
        build_goal_engine,
        concurrency=settings.GOAL_EVALUATION_CONCURRENCY,
    )
    return await job.run(correlation_id=correlation_id)


def evaluate_all_goals(correlation_id: str | None = None) -> dict:
    """Celery task body: one full batch, returns the report counts."""
    correlation_id = correlation_id or f"goal-eval-{new_uuid7()}"
    logger.info("Scheduled goal evaluation starting (%s)", correlation_id)
    report = asyncio.run(run_goal_evaluation(correlation_id))
    return {
        "correlation_id": report.correlation_id,
        "attempted": report.attempted,
        "updated": report.updated,
        "unchanged": report.unchanged,
        "failed": report.failed,
    }
