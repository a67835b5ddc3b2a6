"""Time-series sink interface and its SQL implementation.

The sink is a narrow, Influx-shaped interface: write one tagged point,
range-query points by measurement/time/tags, best-effort delete by tags.
SqlTimeSeriesStore implements it over the ``metric_points`` table, which the
migration turns into a hypertable on TimescaleDB and leaves a plain table on
PostgreSQL/SQLite.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import Executable

from src.db.tables import MetricPointRow
from src.errors import StorageError

logger = logging.getLogger(__name__)

# Tag keys are columns of metric_points; anything else is rejected.
TAG_KEYS: tuple[str, ...] = (
    "record_id",
    "bond_id",
    "project_id",
    "metric_type",
    "source_type",
    "device_id",
    "location",
)


@dataclass(frozen=True)
class SeriesPoint:
    """One point: measurement, tag set, field map, timestamp."""

    measurement: str
    time: datetime
    tags: Mapping[str, str | None] = field(default_factory=dict)
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RangeFilter:
    """Points of ``measurement`` with start <= time < stop and matching tags.

    ``start``/``stop`` may be None for an open-ended range.
    """

    measurement: str
    start: datetime | None = None
    stop: datetime | None = None
    tags: Mapping[str, str] = field(default_factory=dict)


@runtime_checkable
class TimeSeriesStore(Protocol):
    """Capability interface for the time-series sink."""

    async def write_point(self, point: SeriesPoint) -> None:
        ...

    def query(self, flt: RangeFilter) -> AsyncIterator[SeriesPoint]:
        ...

    async def delete_points(self, measurement: str, tags: Mapping[str, str]) -> int:
        ...


def _check_tags(tags: Mapping[str, object]) -> None:
    unknown = set(tags) - set(TAG_KEYS)
    if unknown:
        raise ValueError(f"Unknown tag keys: {sorted(unknown)}")


class SqlTimeSeriesStore:
    """TimeSeriesStore over the metric_points table.

    Shares the caller's session, so a point written during ingestion is
    committed (or rolled back) together with the metric record.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def write_point(self, point: SeriesPoint) -> None:
        _check_tags(point.tags)
        row = MetricPointRow(
            measurement=point.measurement,
            time=point.time,
            fields=dict(point.fields),
            **{key: point.tags.get(key) for key in TAG_KEYS},
        )
        try:
            self._session.add(row)
            await self._session.flush()
        except SQLAlchemyError as exc:
            raise StorageError(f"Time series write failed: {exc}") from exc

    async def query(self, flt: RangeFilter) -> AsyncIterator[SeriesPoint]:
        """Stream matching points in time order.

        Rows are pulled from a server-side cursor; a consumer that stops
        iterating (or is cancelled) closes the cursor without reading the rest.
        """
        _check_tags(flt.tags)
        stmt = select(MetricPointRow).where(MetricPointRow.measurement == flt.measurement)
        if flt.start is not None:
            stmt = stmt.where(MetricPointRow.time >= flt.start)
        if flt.stop is not None:
            stmt = stmt.where(MetricPointRow.time < flt.stop)
        for key, value in flt.tags.items():
            stmt = stmt.where(getattr(MetricPointRow, key) == value)
        stmt = stmt.order_by(MetricPointRow.time, MetricPointRow.point_id)

        try:
            result = await self._session.stream_scalars(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Time series query failed: {exc}") from exc

        try:
            async for row in result:
                yield SeriesPoint(
                    measurement=row.measurement,
                    time=row.time,
                    tags={key: getattr(row, key) for key in TAG_KEYS},
                    fields=dict(row.fields or {}),
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"Time series query failed: {exc}") from exc
        finally:
            await result.close()

    async def delete_points(self, measurement: str, tags: Mapping[str, str]) -> int:
        """Delete matching points inside a SAVEPOINT.

        A failed delete rolls back only the savepoint, so work already
        flushed in the caller's transaction (the record delete) survives
        and can still commit on PostgreSQL.
        """
        _check_tags(tags)
        if not tags:
            raise ValueError("Refusing to delete a whole measurement")
        stmt = self._delete_statement(measurement, tags)
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Time series delete failed: {exc}") from exc
        logger.debug("Deleted %d points from %s (%s)", result.rowcount, measurement, dict(tags))
        return result.rowcount

    @staticmethod
    def _delete_statement(measurement: str, tags: Mapping[str, str]) -> Executable:
        stmt = delete(MetricPointRow).where(MetricPointRow.measurement == measurement)
        for key, value in tags.items():
            stmt = stmt.where(getattr(MetricPointRow, key) == value)
        return stmt
