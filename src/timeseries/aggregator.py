"""Time-series aggregation over accepted metric observations.

record()    - index one metric as a tagged point
summarize() - all-time total per metric type for a bond
aggregate() - windowed reduction with overall statistics
retract()   - best-effort removal of a metric's point

Values stay Decimal end to end; only the dispersion statistics are floats.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from src.errors import StorageError
from src.models.aggregation import (
    AggregationFunction,
    AggregationRequest,
    AggregationResult,
    AggregationStatistics,
    TimeSeriesPoint,
)
from src.models.metric import ImpactMetric
from src.timeseries.intervals import bucket_start, parse_interval
from src.timeseries.store import RangeFilter, SeriesPoint, TimeSeriesStore

logger = logging.getLogger(__name__)

DEFAULT_MEASUREMENT = "impact_metrics"


@dataclass
class _Bucket:
    start: datetime
    values: list[Decimal] = field(default_factory=list)


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, Decimal("0")) / Decimal(len(values))


_REDUCERS: dict[AggregationFunction, Callable[[Sequence[Decimal]], Decimal]] = {
    AggregationFunction.MEAN: _mean,
    AggregationFunction.SUM: lambda values: sum(values, Decimal("0")),
    AggregationFunction.MIN: min,
    AggregationFunction.MAX: max,
}


def dispersion(values: Sequence[Decimal]) -> AggregationStatistics:
    """Population and sample variance/stddev of ``values``.

    Population variance is 0 for a single value; sample variance needs two.
    """
    n = len(values)
    if n < 2:
        return AggregationStatistics()
    floats = [float(v) for v in values]
    mean = math.fsum(floats) / n
    squared = math.fsum((x - mean) ** 2 for x in floats)
    population = squared / n
    sample = squared / (n - 1)
    return AggregationStatistics(
        variance=population,
        standard_deviation=math.sqrt(population),
        sample_variance=sample,
        sample_standard_deviation=math.sqrt(sample),
    )


def _point_value(point: SeriesPoint) -> Decimal | None:
    raw = point.fields.get("value")
    if raw is None:
        return None
    return Decimal(str(raw))


class TimeSeriesAggregator:
    """Writes metrics into a TimeSeriesStore and answers aggregate queries."""

    def __init__(
        self,
        store: TimeSeriesStore,
        *,
        measurement: str = DEFAULT_MEASUREMENT,
        default_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._measurement = measurement
        self._default_timeout = default_timeout

    # ---------------------------------------------------------------
    # Write path
    # ---------------------------------------------------------------

    async def record(self, metric: ImpactMetric) -> None:
        """Write one point for ``metric``.

        Raises:
            StorageError: the sink is unreachable. Never swallowed here;
                ingestion must not silently drop data.
        """
        point = SeriesPoint(
            measurement=self._measurement,
            time=metric.timestamp,
            tags={
                "record_id": str(metric.metric_id),
                "bond_id": metric.bond_id,
                "project_id": metric.project_id,
                "metric_type": metric.metric_type,
                "source_type": metric.source_type.value,
                "device_id": metric.device_id,
                "location": metric.location,
            },
            fields={
                "value": str(metric.value),
                "confidence": metric.data_quality.confidence_score,
            },
        )
        await self._store.write_point(point)
        logger.debug("Indexed metric %s in %s", metric.metric_id, self._measurement)

    async def retract(self, metric_id: object) -> bool:
        """Remove the point written for ``metric_id``. Best effort.

        Returns False (and logs) when the sink refuses or fails; the
        canonical record is gone regardless.
        """
        try:
            removed = await self._store.delete_points(
                self._measurement, {"record_id": str(metric_id)},
            )
        except (StorageError, NotImplementedError) as exc:
            logger.warning(
                "Time series retraction failed for metric %s: %s", metric_id, exc,
            )
            return False
        if removed == 0:
            logger.warning("No time series point found for metric %s", metric_id)
        return removed > 0

    # ---------------------------------------------------------------
    # Read path
    # ---------------------------------------------------------------

    async def summarize(
        self, bond_id: str, *, timeout: float | None = None,
    ) -> dict[str, Decimal]:
        """Sum of every recorded value per metric type for one bond."""
        totals: dict[str, Decimal] = {}

        async def _collect() -> None:
            flt = RangeFilter(measurement=self._measurement, tags={"bond_id": bond_id})
            async with aclosing(self._store.query(flt)) as points:
                async for point in points:
                    value = _point_value(point)
                    metric_type = point.tags.get("metric_type")
                    if value is None or metric_type is None:
                        continue
                    totals[metric_type] = totals.get(metric_type, Decimal("0")) + value

        await self._bounded(_collect(), timeout, f"summary for bond {bond_id}")
        return totals

    async def aggregate(
        self, request: AggregationRequest, *, timeout: float | None = None,
    ) -> AggregationResult:
        """Reduce [start, end) into epoch-aligned buckets, then summarize the buckets."""
        width = parse_interval(request.interval)
        buckets: dict[datetime, _Bucket] = {}

        async def _collect() -> None:
            tags = {"bond_id": request.bond_id, "metric_type": request.metric_type}
            if request.project_id:
                tags["project_id"] = request.project_id
            flt = RangeFilter(
                measurement=self._measurement,
                start=request.start_time,
                stop=request.end_time,
                tags=tags,
            )
            async with aclosing(self._store.query(flt)) as points:
                async for point in points:
                    value = _point_value(point)
                    if value is None:
                        continue
                    start = bucket_start(point.time, width)
                    buckets.setdefault(start, _Bucket(start=start)).values.append(value)

        await self._bounded(
            _collect(), timeout, f"aggregation for bond {request.bond_id}",
        )

        reducer = _REDUCERS[request.aggregation_function]
        series = [
            TimeSeriesPoint(
                timestamp=bucket.start,
                value=reducer(bucket.values),
                count=len(bucket.values),
            )
            for bucket in sorted(buckets.values(), key=lambda b: b.start)
        ]
        return self._build_result(request, series)

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    async def _bounded(self, work, timeout: float | None, label: str) -> None:
        limit = timeout if timeout is not None else self._default_timeout
        try:
            async with asyncio.timeout(limit):
                await work
        except TimeoutError as exc:
            raise StorageError(f"Time series {label} timed out after {limit}s") from exc

    @staticmethod
    def _build_result(
        request: AggregationRequest, series: list[TimeSeriesPoint],
    ) -> AggregationResult:
        result = AggregationResult(
            bond_id=request.bond_id,
            project_id=request.project_id,
            metric_type=request.metric_type,
            interval=request.interval,
            aggregation_function=request.aggregation_function,
            start_time=request.start_time,
            end_time=request.end_time,
            time_series=series,
        )
        if not series:
            return result

        values = [point.value for point in series]
        total = sum(values, Decimal("0"))
        result.total_value = total
        result.min_value = min(values)
        result.max_value = max(values)
        result.data_point_count = len(values)
        result.average_value = total / Decimal(len(values))
        result.statistics = dispersion(values)
        return result
