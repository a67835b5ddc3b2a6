"""Tests for TimeSeriesAggregator over the SQL-backed store."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from uuid_extensions import uuid7

from src.errors import StorageError
from src.models.aggregation import AggregationFunction, AggregationRequest
from src.models.common import DataSourceType, MetricUnit, QualityStatus
from src.models.metric import DataQuality, ImpactMetric
from src.timeseries.aggregator import TimeSeriesAggregator, dispersion
from src.timeseries.store import RangeFilter, SqlTimeSeriesStore

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
BOND = "GB-2026-001"
CO2 = "CARBON_EMISSIONS_REDUCTION"


def _make_metric(
    value: str,
    timestamp: datetime,
    *,
    bond_id: str = BOND,
    metric_type: str = CO2,
    project_id: str = "SOLAR-FARM-7",
) -> ImpactMetric:
    return ImpactMetric(
        metric_id=uuid7(),
        bond_id=bond_id,
        project_id=project_id,
        metric_type=metric_type,
        value=Decimal(value),
        unit=MetricUnit.TONS_CO2,
        timestamp=timestamp,
        source_type=DataSourceType.SMART_METER,
        device_id="meter-42",
        data_quality=DataQuality(
            confidence_score=0.95,
            is_verified=True,
            verification_method="CALIBRATED_METER",
            quality_status=QualityStatus.EXCELLENT,
        ),
        created_at=timestamp,
        updated_at=timestamp,
    )


def _make_request(**overrides) -> AggregationRequest:
    fields = {
        "bond_id": BOND,
        "metric_type": CO2,
        "start_time": T0,
        "end_time": T0 + timedelta(hours=3),
        "interval": "1h",
        "aggregation_function": "mean",
    }
    fields.update(overrides)
    return AggregationRequest(**fields)


@pytest.fixture
def aggregator(db_session) -> TimeSeriesAggregator:
    return TimeSeriesAggregator(SqlTimeSeriesStore(db_session))


class _SlowStore:
    async def write_point(self, point) -> None:
        return None

    async def query(self, flt):
        await asyncio.sleep(10)
        yield  # pragma: no cover

    async def delete_points(self, measurement, tags) -> int:
        raise NotImplementedError("points are immutable in this sink")


class _BrokenStore:
    async def write_point(self, point) -> None:
        raise StorageError("time series sink unreachable")

    async def query(self, flt):
        raise StorageError("time series sink unreachable")
        yield  # pragma: no cover

    async def delete_points(self, measurement, tags) -> int:
        raise StorageError("time series sink unreachable")


class TestAggregate:

    @pytest.mark.anyio
    async def test_single_point(self, aggregator: TimeSeriesAggregator) -> None:
        await aggregator.record(_make_metric("150.5", T0 + timedelta(minutes=5)))

        result = await aggregator.aggregate(_make_request())

        assert result.data_point_count == 1
        assert result.total_value == Decimal("150.5")
        assert result.average_value == Decimal("150.5")
        assert result.min_value == Decimal("150.5")
        assert result.max_value == Decimal("150.5")
        assert result.statistics.variance == 0.0
        assert result.statistics.standard_deviation == 0.0

    @pytest.mark.anyio
    async def test_hourly_mean_buckets(self, aggregator: TimeSeriesAggregator) -> None:
        await aggregator.record(_make_metric("10", T0 + timedelta(minutes=5)))
        await aggregator.record(_make_metric("20", T0 + timedelta(minutes=40)))
        await aggregator.record(_make_metric("30", T0 + timedelta(minutes=70)))

        result = await aggregator.aggregate(_make_request())

        assert [p.timestamp for p in result.time_series] == [T0, T0 + timedelta(hours=1)]
        assert [p.value for p in result.time_series] == [Decimal("15"), Decimal("30")]
        assert [p.count for p in result.time_series] == [2, 1]
        assert result.total_value == Decimal("45")
        assert result.average_value == Decimal("22.5")
        assert result.min_value == Decimal("15")
        assert result.max_value == Decimal("30")
        assert result.data_point_count == 2
        assert result.statistics.variance == pytest.approx(56.25)
        assert result.statistics.standard_deviation == pytest.approx(7.5)
        assert result.statistics.sample_variance == pytest.approx(112.5)

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        ("function", "expected"),
        [("sum", "30"), ("min", "10"), ("max", "20"), ("avg", "15")],
    )
    async def test_bucket_functions(
        self, aggregator: TimeSeriesAggregator, function: str, expected: str,
    ) -> None:
        await aggregator.record(_make_metric("10", T0 + timedelta(minutes=5)))
        await aggregator.record(_make_metric("20", T0 + timedelta(minutes=40)))

        result = await aggregator.aggregate(_make_request(aggregation_function=function))

        assert len(result.time_series) == 1
        assert result.time_series[0].value == Decimal(expected)

    @pytest.mark.anyio
    async def test_range_is_half_open(self, aggregator: TimeSeriesAggregator) -> None:
        await aggregator.record(_make_metric("1", T0))
        await aggregator.record(_make_metric("100", T0 + timedelta(hours=3)))

        result = await aggregator.aggregate(_make_request(aggregation_function="sum"))

        assert result.total_value == Decimal("1")

    @pytest.mark.anyio
    async def test_filters_by_bond_type_and_project(
        self, aggregator: TimeSeriesAggregator,
    ) -> None:
        at = T0 + timedelta(minutes=5)
        await aggregator.record(_make_metric("1", at))
        await aggregator.record(_make_metric("10", at, bond_id="GB-OTHER"))
        await aggregator.record(_make_metric("100", at, metric_type="WATER_SAVED"))
        await aggregator.record(_make_metric("1000", at, project_id="WIND-PARK-2"))

        everything = await aggregator.aggregate(_make_request(aggregation_function="sum"))
        one_project = await aggregator.aggregate(
            _make_request(aggregation_function="sum", project_id="WIND-PARK-2")
        )

        assert everything.total_value == Decimal("1001")
        assert one_project.total_value == Decimal("1000")

    @pytest.mark.anyio
    async def test_empty_range(self, aggregator: TimeSeriesAggregator) -> None:
        result = await aggregator.aggregate(_make_request())
        assert result.time_series == []
        assert result.data_point_count == 0
        assert result.total_value == Decimal("0")

    @pytest.mark.anyio
    async def test_decimal_values_do_not_drift(self, aggregator: TimeSeriesAggregator) -> None:
        for minute in range(10):
            await aggregator.record(_make_metric("0.1", T0 + timedelta(minutes=minute)))

        result = await aggregator.aggregate(_make_request(aggregation_function="sum"))

        assert result.total_value == Decimal("1.0")

    @pytest.mark.anyio
    async def test_timeout_raises_storage_error(self) -> None:
        aggregator = TimeSeriesAggregator(_SlowStore())
        with pytest.raises(StorageError, match="timed out"):
            await aggregator.aggregate(_make_request(), timeout=0.05)

    @pytest.mark.anyio
    async def test_unreachable_store_raises_storage_error(self) -> None:
        aggregator = TimeSeriesAggregator(_BrokenStore())
        with pytest.raises(StorageError):
            await aggregator.aggregate(_make_request())


class TestSummarize:

    @pytest.mark.anyio
    async def test_totals_per_type_over_all_history(
        self, aggregator: TimeSeriesAggregator,
    ) -> None:
        await aggregator.record(_make_metric("100", T0 - timedelta(days=400)))
        await aggregator.record(_make_metric("50.25", T0))
        await aggregator.record(_make_metric("7", T0, metric_type="WATER_SAVED"))
        await aggregator.record(_make_metric("999", T0, bond_id="GB-OTHER"))

        totals = await aggregator.summarize(BOND)

        assert totals == {CO2: Decimal("150.25"), "WATER_SAVED": Decimal("7")}

    @pytest.mark.anyio
    async def test_unknown_bond_is_empty(self, aggregator: TimeSeriesAggregator) -> None:
        assert await aggregator.summarize("GB-NONE") == {}


class TestRecordAndRetract:

    @pytest.mark.anyio
    async def test_record_writes_tags_and_fields(self, db_session) -> None:
        store = SqlTimeSeriesStore(db_session)
        metric = _make_metric("42", T0)
        await TimeSeriesAggregator(store).record(metric)

        points = [p async for p in store.query(RangeFilter(measurement="impact_metrics"))]

        assert len(points) == 1
        assert points[0].tags["record_id"] == str(metric.metric_id)
        assert points[0].tags["device_id"] == "meter-42"
        assert points[0].tags["location"] is None
        assert points[0].fields == {"value": "42", "confidence": 0.95}
        assert points[0].time == T0

    @pytest.mark.anyio
    async def test_write_failure_propagates(self) -> None:
        aggregator = TimeSeriesAggregator(_BrokenStore())
        with pytest.raises(StorageError):
            await aggregator.record(_make_metric("1", T0))

    @pytest.mark.anyio
    async def test_retract_removes_point(self, aggregator: TimeSeriesAggregator) -> None:
        metric = _make_metric("5", T0)
        await aggregator.record(metric)

        assert await aggregator.retract(metric.metric_id) is True
        assert await aggregator.summarize(BOND) == {}

    @pytest.mark.anyio
    async def test_retract_unknown_returns_false(self, aggregator: TimeSeriesAggregator) -> None:
        assert await aggregator.retract(uuid7()) is False

    @pytest.mark.anyio
    async def test_retract_is_best_effort(self) -> None:
        assert await TimeSeriesAggregator(_SlowStore()).retract(uuid7()) is False
        assert await TimeSeriesAggregator(_BrokenStore()).retract(uuid7()) is False


class TestDispersion:

    def test_fewer_than_two_values(self) -> None:
        assert dispersion([]).variance == 0.0
        assert dispersion([Decimal("3")]).standard_deviation == 0.0

    def test_population_and_sample(self) -> None:
        stats = dispersion([Decimal("2"), Decimal("4"), Decimal("4"), Decimal("4"),
                            Decimal("5"), Decimal("5"), Decimal("7"), Decimal("9")])
        assert stats.variance == pytest.approx(4.0)
        assert stats.standard_deviation == pytest.approx(2.0)
        assert stats.sample_variance == pytest.approx(32 / 7)

    def test_function_alias(self) -> None:
        assert AggregationFunction("average") is AggregationFunction.MEAN
        assert AggregationFunction("MAX") is AggregationFunction.MAX
