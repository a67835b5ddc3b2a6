"""Tests for the ORM table models - src/db/tables.py.

Tests verify:
- metric_points.point_id matches the migration on PostgreSQL (BIGINT identity)
- SQLite still assigns point ids itself
- UTCDateTime re-tags point times as UTC on SQLite
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from src.db.tables import MetricPointRow


class TestMetricPointsTable:

    def test_point_id_is_bigint_identity_on_postgres(self) -> None:
        ddl = str(CreateTable(MetricPointRow.__table__).compile(dialect=postgresql.dialect()))
        assert "point_id BIGINT GENERATED BY DEFAULT AS IDENTITY" in ddl

    @pytest.mark.anyio
    async def test_sqlite_assigns_point_ids(self, db_session) -> None:
        when = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        rows = [
            MetricPointRow(measurement="impact_metrics", time=when, fields={"value": "1"}),
            MetricPointRow(measurement="impact_metrics", time=when, fields={"value": "2"}),
        ]
        db_session.add_all(rows)
        await db_session.flush()

        assert rows[0].point_id is not None
        assert rows[0].point_id != rows[1].point_id

    @pytest.mark.anyio
    async def test_time_comes_back_as_utc(self, db_session) -> None:
        when = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        db_session.add(MetricPointRow(measurement="m", time=when, fields={"value": "0.10"}))
        await db_session.flush()
        db_session.expire_all()

        row = (await db_session.execute(select(MetricPointRow))).scalar_one()

        assert row.time == when
        assert row.time.tzinfo is not None
        assert Decimal(row.fields["value"]) == Decimal("0.10")
