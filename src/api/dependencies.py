"""FastAPI dependency injection factories: the composition root.

Repository and service factories take AsyncSession via
Depends(get_async_session). The notarization dispatcher is process-wide:
its background tasks outlive the request that scheduled them.
"""

from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import NotarizationBackend, Settings, get_settings
from src.db.session import get_async_session, session_scope
from src.engine.goal_progress import GoalProgressEngine
from src.models.common import new_uuid7
from src.notarization.base import NotarizationReceipt, NotarizationSink
from src.notarization.dispatcher import NotarizationDispatcher
from src.notarization.http import HttpNotarizationSink
from src.notarization.memory import InMemoryNotarizationSink
from src.quality.assessor import DataQualityAssessor
from src.quality.config import AssessorConfig
from src.repositories.goals import GoalRepository
from src.repositories.metrics import MetricRepository
from src.services.goals import GoalService
from src.services.metrics import MetricService
from src.timeseries.aggregator import TimeSeriesAggregator
from src.timeseries.store import SqlTimeSeriesStore

CORRELATION_HEADER = "X-Request-ID"

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def get_correlation_id(request: Request) -> str:
    """Correlation id set by the middleware in main.py (header or generated)."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(new_uuid7())
        request.state.correlation_id = correlation_id
    return correlation_id


# ---------------------------------------------------------------------------
# Process-wide singletons
# ---------------------------------------------------------------------------

_assessor: DataQualityAssessor | None = None
_dispatcher: NotarizationDispatcher | None = None


def get_assessor() -> DataQualityAssessor:
    global _assessor
    if _assessor is None:
        config = AssessorConfig(jitter_max=get_settings().QUALITY_JITTER_MAX)
        _assessor = DataQualityAssessor(config)
    return _assessor


def build_notarization_sink(settings: Settings) -> NotarizationSink:
    if settings.NOTARIZATION_BACKEND == NotarizationBackend.HTTP:
        return HttpNotarizationSink(
            settings.NOTARIZATION_URL,
            timeout=settings.NOTARIZATION_TIMEOUT_SECONDS,
        )
    return InMemoryNotarizationSink()


async def attach_receipt(record_id: str, receipt: NotarizationReceipt) -> bool:
    """Store a receipt on its metric in a fresh unit of work."""
    async with session_scope() as session:
        row = await MetricRepository(session).attach_receipt(
            UUID(record_id), receipt.transaction_hash, receipt.recorded_at,
        )
        return row is not None


def get_notarization_dispatcher() -> NotarizationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotarizationDispatcher(
            build_notarization_sink(get_settings()), attach_receipt,
        )
    return _dispatcher


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


async def get_metric_repo(
    session: AsyncSession = Depends(get_async_session),
) -> MetricRepository:
    return MetricRepository(session)


async def get_goal_repo(
    session: AsyncSession = Depends(get_async_session),
) -> GoalRepository:
    return GoalRepository(session)


async def get_aggregator(
    session: AsyncSession = Depends(get_async_session),
) -> TimeSeriesAggregator:
    settings = get_settings()
    return TimeSeriesAggregator(
        SqlTimeSeriesStore(session),
        measurement=settings.TIMESERIES_MEASUREMENT,
        default_timeout=settings.AGGREGATION_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_metric_service(
    repo: MetricRepository = Depends(get_metric_repo),
    aggregator: TimeSeriesAggregator = Depends(get_aggregator),
    assessor: DataQualityAssessor = Depends(get_assessor),
    dispatcher: NotarizationDispatcher = Depends(get_notarization_dispatcher),
) -> MetricService:
    return MetricService(repo, aggregator, assessor, dispatcher)


async def get_goal_service(
    repo: GoalRepository = Depends(get_goal_repo),
    aggregator: TimeSeriesAggregator = Depends(get_aggregator),
) -> GoalService:
    return GoalService(repo, GoalProgressEngine(repo, aggregator))
