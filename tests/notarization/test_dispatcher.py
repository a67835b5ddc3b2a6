"""Tests for NotarizationDispatcher: background submit, attach retries, failure isolation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from uuid_extensions import uuid7

from src.models.common import DataSourceType, MetricUnit, QualityStatus
from src.models.metric import DataQuality, ImpactMetric
from src.notarization.base import metric_payload_hash
from src.notarization.dispatcher import NotarizationDispatcher
from src.notarization.memory import InMemoryNotarizationSink

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _make_metric() -> ImpactMetric:
    return ImpactMetric(
        metric_id=uuid7(),
        bond_id="GB-2026-001",
        project_id="SOLAR-FARM-7",
        metric_type="CARBON_EMISSIONS_REDUCTION",
        value=Decimal("150.5"),
        unit=MetricUnit.TONS_CO2,
        timestamp=T0,
        source_type=DataSourceType.SMART_METER,
        data_quality=DataQuality(
            confidence_score=0.95,
            is_verified=True,
            verification_method="CALIBRATED_METER",
            quality_status=QualityStatus.EXCELLENT,
        ),
        created_at=T0,
        updated_at=T0,
    )


class _FlakyAttacher:
    """Returns False (record not visible yet) ``misses`` times, then True."""

    def __init__(self, misses: int) -> None:
        self.misses = misses
        self.calls: list[str] = []

    async def __call__(self, record_id, receipt) -> bool:
        self.calls.append(record_id)
        return len(self.calls) > self.misses


class _BrokenSink:
    async def submit(self, record_id, payload_hash, *, correlation_id):
        raise RuntimeError("socket closed")


class TestDispatch:

    @pytest.mark.anyio
    async def test_submits_hash_and_attaches(self) -> None:
        sink = InMemoryNotarizationSink()
        attach = _FlakyAttacher(misses=0)
        dispatcher = NotarizationDispatcher(sink, attach, attach_delay=0)
        metric = _make_metric()

        dispatcher.dispatch(metric, correlation_id="req-1")
        await dispatcher.drain()

        assert sink.submissions[0].record_id == str(metric.metric_id)
        assert sink.submissions[0].payload_hash == metric_payload_hash(metric)
        assert attach.calls == [str(metric.metric_id)]
        assert dispatcher.pending == 0

    @pytest.mark.anyio
    async def test_attach_retried_until_record_visible(self) -> None:
        attach = _FlakyAttacher(misses=1)
        dispatcher = NotarizationDispatcher(
            InMemoryNotarizationSink(), attach, attach_attempts=3, attach_delay=0,
        )

        dispatcher.dispatch(_make_metric(), correlation_id="req-2")
        await dispatcher.drain()

        assert len(attach.calls) == 2

    @pytest.mark.anyio
    async def test_receipt_dropped_after_attempts(self) -> None:
        attach = _FlakyAttacher(misses=10)
        dispatcher = NotarizationDispatcher(
            InMemoryNotarizationSink(), attach, attach_attempts=3, attach_delay=0,
        )

        dispatcher.dispatch(_make_metric(), correlation_id="req-3")
        await dispatcher.drain()

        assert len(attach.calls) == 3

    @pytest.mark.anyio
    async def test_attach_exception_is_retried(self) -> None:
        calls = []

        async def _attach(record_id, receipt) -> bool:
            calls.append(record_id)
            if len(calls) == 1:
                raise RuntimeError("database is locked")
            return True

        dispatcher = NotarizationDispatcher(InMemoryNotarizationSink(), _attach, attach_delay=0)
        dispatcher.dispatch(_make_metric(), correlation_id="req-4")
        await dispatcher.drain()

        assert len(calls) == 2

    @pytest.mark.anyio
    @pytest.mark.parametrize("sink", [InMemoryNotarizationSink(fail=True), _BrokenSink()])
    async def test_sink_failure_is_swallowed(self, sink) -> None:
        attach = _FlakyAttacher(misses=0)
        dispatcher = NotarizationDispatcher(sink, attach, attach_delay=0)

        task = dispatcher.dispatch(_make_metric(), correlation_id="req-5")
        await dispatcher.drain()

        assert task.exception() is None
        assert attach.calls == []

    @pytest.mark.anyio
    async def test_drain_waits_for_every_task(self) -> None:
        sink = InMemoryNotarizationSink()
        dispatcher = NotarizationDispatcher(sink, _FlakyAttacher(misses=0), attach_delay=0)

        for _ in range(5):
            dispatcher.dispatch(_make_metric(), correlation_id="req-6")
        assert dispatcher.pending == 5
        await dispatcher.drain()

        assert dispatcher.pending == 0
        assert len(sink.submissions) == 5
