"""Tests for MetricRepository: insert-once metric records."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from uuid_extensions import uuid7

from src.errors import ConflictError
from src.models.common import DataSourceType, MetricUnit, QualityStatus
from src.models.metric import DataQuality, ImpactMetric
from src.repositories.metrics import MetricRepository

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
BOND = "GB-2026-001"


def _make_metric(
    value: str = "150.5",
    *,
    timestamp: datetime = T0,
    bond_id: str = BOND,
    metric_type: str = "CARBON_EMISSIONS_REDUCTION",
    status: QualityStatus = QualityStatus.EXCELLENT,
) -> ImpactMetric:
    return ImpactMetric(
        metric_id=uuid7(),
        bond_id=bond_id,
        project_id="SOLAR-FARM-7",
        metric_type=metric_type,
        value=Decimal(value),
        unit=MetricUnit.TONS_CO2,
        timestamp=timestamp,
        source_type=DataSourceType.SMART_METER,
        metadata={"firmware": "1.2.0"},
        data_quality=DataQuality(
            confidence_score=0.95,
            is_verified=True,
            verification_method="CALIBRATED_METER",
            quality_status=status,
            quality_metrics={"completeness": 1.0},
        ),
        created_at=T0,
        updated_at=T0,
    )


@pytest.fixture
def repo(db_session) -> MetricRepository:
    return MetricRepository(db_session)


class TestMetricRepository:

    @pytest.mark.anyio
    async def test_create_and_get_round_trips_exact_values(
        self, repo: MetricRepository,
    ) -> None:
        metric = _make_metric("0.1000000000000000055511151231257827")
        await repo.create(metric)

        row = await repo.get(metric.metric_id)
        stored = ImpactMetric.from_row(row)

        assert stored.value == Decimal("0.1000000000000000055511151231257827")
        assert stored.timestamp == T0
        assert stored.timestamp.tzinfo is not None
        assert stored.data_quality == metric.data_quality
        assert stored.metadata == {"firmware": "1.2.0"}
        assert row.quality_status == "EXCELLENT"

    @pytest.mark.anyio
    async def test_duplicate_id_is_conflict(self, repo: MetricRepository) -> None:
        metric = _make_metric()
        await repo.create(metric)
        with pytest.raises(ConflictError):
            await repo.create(metric)

    @pytest.mark.anyio
    async def test_get_unknown_returns_none(self, repo: MetricRepository) -> None:
        assert await repo.get(uuid7()) is None

    @pytest.mark.anyio
    async def test_list_by_bond_pages_newest_first(self, repo: MetricRepository) -> None:
        for hour in range(5):
            await repo.create(_make_metric(str(hour), timestamp=T0 + timedelta(hours=hour)))
        await repo.create(_make_metric(bond_id="GB-OTHER"))

        first, total = await repo.list_by_bond(BOND, page=0, size=2)
        last, _ = await repo.list_by_bond(BOND, page=2, size=2)

        assert total == 5
        assert [r.value for r in first] == [Decimal("4"), Decimal("3")]
        assert [r.value for r in last] == [Decimal("0")]

    @pytest.mark.anyio
    async def test_list_by_bond_and_type(self, repo: MetricRepository) -> None:
        await repo.create(_make_metric())
        await repo.create(_make_metric(metric_type="WATER_SAVED"))

        rows, total = await repo.list_by_bond_and_type(BOND, "WATER_SAVED")

        assert total == 1
        assert rows[0].metric_type == "WATER_SAVED"

    @pytest.mark.anyio
    async def test_list_by_quality_status(self, repo: MetricRepository) -> None:
        await repo.create(_make_metric(status=QualityStatus.POOR))
        await repo.create(_make_metric(status=QualityStatus.EXCELLENT))

        rows, total = await repo.list_by_quality_status("POOR")

        assert total == 1
        assert rows[0].quality_status == "POOR"

    @pytest.mark.anyio
    async def test_find_in_range_is_half_open_and_ordered(
        self, repo: MetricRepository,
    ) -> None:
        for hour in (3, 0, 1, 2):
            await repo.create(_make_metric(str(hour), timestamp=T0 + timedelta(hours=hour)))

        rows = await repo.find_in_range(
            BOND, "CARBON_EMISSIONS_REDUCTION", T0, T0 + timedelta(hours=3),
        )

        assert [r.value for r in rows] == [Decimal("0"), Decimal("1"), Decimal("2")]

    @pytest.mark.anyio
    async def test_latest_and_counts(self, repo: MetricRepository) -> None:
        for hour in range(4):
            await repo.create(_make_metric(str(hour), timestamp=T0 + timedelta(hours=hour)))
        await repo.create(_make_metric(metric_type="WATER_SAVED"))

        latest = await repo.latest(BOND, "CARBON_EMISSIONS_REDUCTION", limit=2)

        assert [r.value for r in latest] == [Decimal("3"), Decimal("2")]
        assert await repo.count_by_bond(BOND) == 5
        assert await repo.count_by_bond_and_type(BOND, "WATER_SAVED") == 1
        assert await repo.count_metric_types(BOND) == 2
        assert await repo.count_by_bond("GB-NONE") == 0

    @pytest.mark.anyio
    async def test_attach_receipt(self, repo: MetricRepository) -> None:
        metric = _make_metric()
        await repo.create(metric)
        at = T0 + timedelta(minutes=1)

        row = await repo.attach_receipt(metric.metric_id, "0xabc", at)

        assert row.notarization_receipt == "0xabc"
        assert row.notarized_at == at
        assert row.value == metric.value

    @pytest.mark.anyio
    async def test_attach_receipt_unknown_metric(self, repo: MetricRepository) -> None:
        assert await repo.attach_receipt(uuid7(), "0xabc", T0) is None

    @pytest.mark.anyio
    async def test_delete(self, repo: MetricRepository) -> None:
        metric = _make_metric()
        await repo.create(metric)

        assert await repo.delete(metric.metric_id) is True
        assert await repo.delete(metric.metric_id) is False
        assert await repo.count_by_bond(BOND) == 0
