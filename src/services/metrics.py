"""Metric ingestion and query service.

Ingestion is one unit of work: validate, score, persist, index. The caller's
session commits it. Notarization is dispatched afterwards and never blocks
or fails the request.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import structlog

from src.errors import MetricNotFoundError, ValidationError
from src.models.aggregation import AggregationRequest, AggregationResult
from src.models.common import Page, QualityStatus, new_uuid7, normalize_metric_type, utc_now
from src.models.metric import (
    BondMetricStats,
    ImpactMetric,
    MetricSubmission,
    is_unit_compatible,
)
from src.notarization.dispatcher import NotarizationDispatcher
from src.quality.assessor import DataQualityAssessor
from src.repositories.metrics import MetricRepository
from src.timeseries.aggregator import TimeSeriesAggregator

logger = structlog.get_logger(__name__)

FUTURE_TOLERANCE = timedelta(hours=1)


def validate_submission(submission: MetricSubmission, now: datetime) -> None:
    """Business rules a submission must pass before anything is written.

    Raises:
        ValidationError: negative value, timestamp beyond tolerance, or a
            unit that does not fit the metric type.
    """
    if submission.value < 0:
        raise ValidationError("Metric value cannot be negative")
    if submission.timestamp > now + FUTURE_TOLERANCE:
        raise ValidationError(
            "Metric timestamp cannot be more than 1 hour in the future"
        )
    if not is_unit_compatible(submission.metric_type, submission.unit):
        raise ValidationError(
            f"Invalid unit {submission.unit} for metric type {submission.metric_type}"
        )


class MetricService:
    """Orchestrates assessor, metric store, aggregator and notarization."""

    def __init__(
        self,
        metrics: MetricRepository,
        aggregator: TimeSeriesAggregator,
        assessor: DataQualityAssessor,
        dispatcher: NotarizationDispatcher | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        aggregation_timeout: float | None = None,
    ) -> None:
        self._metrics = metrics
        self._aggregator = aggregator
        self._assessor = assessor
        self._dispatcher = dispatcher
        self._clock = clock
        self._aggregation_timeout = aggregation_timeout

    # ---------------------------------------------------------------
    # Ingestion
    # ---------------------------------------------------------------

    async def create_metric(
        self, submission: MetricSubmission, *, correlation_id: str,
    ) -> ImpactMetric:
        """Validate, score, store and index one observation.

        Raises:
            ValidationError: the submission breaks a business rule; nothing
                is written.
            ConflictError: the generated id already exists.
            StorageError: the time-series sink failed. Propagates so the
                session rolls the record back with it.
        """
        log = logger.bind(
            correlation_id=correlation_id,
            bond_id=submission.bond_id,
            metric_type=submission.metric_type,
        )
        now = self._clock()
        validate_submission(submission, now)

        quality = self._assessor.assess(submission)
        metric = ImpactMetric(
            metric_id=new_uuid7(),
            bond_id=submission.bond_id,
            project_id=submission.project_id,
            metric_type=submission.metric_type,
            value=submission.value,
            unit=submission.unit,
            timestamp=submission.timestamp,
            source_type=submission.source_type,
            source_id=submission.source_id,
            device_id=submission.device_id,
            location=submission.location,
            metadata=submission.metadata,
            data_quality=quality,
            created_at=now,
            updated_at=now,
        )

        row = await self._metrics.create(metric)
        await self._aggregator.record(metric)
        stored = ImpactMetric.from_row(row)
        log.info(
            "metric_ingested",
            metric_id=str(stored.metric_id),
            confidence_score=quality.confidence_score,
            quality_status=quality.quality_status,
        )

        if self._dispatcher is not None:
            self._dispatcher.dispatch(stored, correlation_id=correlation_id)
        return stored

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    async def get_metric(self, metric_id: UUID) -> ImpactMetric:
        row = await self._metrics.get(metric_id)
        if row is None:
            raise MetricNotFoundError(metric_id)
        return ImpactMetric.from_row(row)

    async def list_by_bond(
        self, bond_id: str, *, page: int = 0, size: int = 50,
    ) -> Page[ImpactMetric]:
        rows, total = await self._metrics.list_by_bond(bond_id, page=page, size=size)
        return self._page(rows, total, page, size)

    async def list_by_bond_and_type(
        self, bond_id: str, metric_type: str, *, page: int = 0, size: int = 50,
    ) -> Page[ImpactMetric]:
        rows, total = await self._metrics.list_by_bond_and_type(
            bond_id, self._metric_type(metric_type), page=page, size=size,
        )
        return self._page(rows, total, page, size)

    async def list_by_quality_status(
        self, quality_status: QualityStatus, *, page: int = 0, size: int = 50,
    ) -> Page[ImpactMetric]:
        rows, total = await self._metrics.list_by_quality_status(
            quality_status.value, page=page, size=size,
        )
        return self._page(rows, total, page, size)

    async def find_in_range(
        self, bond_id: str, metric_type: str, start: datetime, end: datetime,
    ) -> list[ImpactMetric]:
        if end <= start:
            raise ValidationError("end must be after start")
        rows = await self._metrics.find_in_range(
            bond_id, self._metric_type(metric_type), start, end,
        )
        return [ImpactMetric.from_row(row) for row in rows]

    async def latest(
        self, bond_id: str, metric_type: str, *, limit: int = 10,
    ) -> list[ImpactMetric]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        rows = await self._metrics.latest(bond_id, self._metric_type(metric_type), limit)
        return [ImpactMetric.from_row(row) for row in rows]

    async def count(self, bond_id: str, metric_type: str | None = None) -> int:
        if metric_type is None:
            return await self._metrics.count_by_bond(bond_id)
        return await self._metrics.count_by_bond_and_type(
            bond_id, self._metric_type(metric_type),
        )

    async def stats(self, bond_id: str) -> BondMetricStats:
        return BondMetricStats(
            bond_id=bond_id,
            total_metrics=await self._metrics.count_by_bond(bond_id),
            metric_types=await self._metrics.count_metric_types(bond_id),
            generated_at=self._clock(),
        )

    async def aggregate(
        self, request: AggregationRequest, *, correlation_id: str,
    ) -> AggregationResult:
        result = await self._aggregator.aggregate(request, timeout=self._aggregation_timeout)
        logger.bind(correlation_id=correlation_id).debug(
            "metrics_aggregated",
            bond_id=request.bond_id,
            metric_type=request.metric_type,
            buckets=len(result.time_series),
        )
        return result

    async def summary(self, bond_id: str, *, correlation_id: str) -> dict[str, Decimal]:
        totals = await self._aggregator.summarize(bond_id, timeout=self._aggregation_timeout)
        logger.bind(correlation_id=correlation_id).debug(
            "metrics_summarized", bond_id=bond_id, metric_types=len(totals),
        )
        return totals

    # ---------------------------------------------------------------
    # Administration
    # ---------------------------------------------------------------

    async def delete_metric(self, metric_id: UUID, *, correlation_id: str) -> None:
        """Remove the record, then retract its time-series point best-effort."""
        log = logger.bind(correlation_id=correlation_id, metric_id=str(metric_id))
        if not await self._metrics.delete(metric_id):
            raise MetricNotFoundError(metric_id)
        retracted = await self._aggregator.retract(metric_id)
        log.info("metric_deleted", retracted=retracted)

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    @staticmethod
    def _metric_type(value: str) -> str:
        try:
            return normalize_metric_type(value)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @staticmethod
    def _page(rows: list, total: int, page: int, size: int) -> Page[ImpactMetric]:
        return Page[ImpactMetric](
            items=[ImpactMetric.from_row(row) for row in rows],
            total=total,
            page=page,
            size=size,
        )
