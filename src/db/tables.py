"""SQLAlchemy ORM table models for the impact monitoring service.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for schema-flexible maps
(metadata, data quality, KPIs, point fields).

Categories:
- RECORDS: ImpactMetricRow (immutable apart from the notarization receipt),
           ImpactGoalRow (progress fields updated under optimistic versioning)
- TIME SERIES: MetricPointRow (append-only points; promoted to a hypertable
               on TimescaleDB by the migration, plain table elsewhere)
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON, TypeDecorator

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


class DecimalString(TypeDecorator):
    """Arbitrary-precision decimal stored as its canonical string form.

    Keeps values exact on every backend (SQLite has no native decimal).
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo, so values are stored as naive UTC there and
    re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Metric records
# ---------------------------------------------------------------------------


class ImpactMetricRow(Base):
    """One metric observation. value/unit/data_quality never change after insert."""

    __tablename__ = "impact_metrics"
    __table_args__ = (
        Index("ix_impact_metrics_bond_timestamp", "bond_id", "timestamp"),
        Index("ix_impact_metrics_bond_type_timestamp", "bond_id", "metric_type", "timestamp"),
    )

    metric_id: Mapped[UUID] = mapped_column(primary_key=True)
    bond_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    metric_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    value: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_json = mapped_column(FlexJSON, nullable=False, default=dict)
    data_quality = mapped_column(FlexJSON, nullable=False)
    quality_status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    notarization_receipt: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notarized_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Goals - OPERATIONAL (optimistic versioning)
# ---------------------------------------------------------------------------


class ImpactGoalRow(Base):
    """Goal definition plus its latest progress snapshot.

    version_id_col makes every UPDATE conditional on the version read, so a
    concurrent evaluation cannot silently overwrite a newer snapshot.
    """

    __tablename__ = "impact_goals"
    __table_args__ = (
        UniqueConstraint("bond_id", "metric_type", name="uq_impact_goal_bond_metric_type"),
    )

    goal_id: Mapped[UUID] = mapped_column(primary_key=True)
    bond_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    goal_name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    metric_type: Mapped[str] = mapped_column(String(100), nullable=False)
    target_value: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    target_unit: Mapped[str] = mapped_column(String(50), nullable=False)
    target_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    baseline_value: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    baseline_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    current_value: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    progress_percentage: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    kpis = mapped_column(FlexJSON, nullable=False, default=dict)
    verification_method: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reporting_frequency: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# ---------------------------------------------------------------------------
# Time series - APPEND-ONLY
# ---------------------------------------------------------------------------


class MetricPointRow(Base):
    """A single time-series point.

    Tags are fixed columns (the measurement schema), fields are a free map
    of decimal strings / floats.

    On PostgreSQL the migration widens the primary key to (point_id, time)
    for hypertable partitioning. Here point_id stays the only key column so
    SQLite can still autoincrement it.
    """

    __tablename__ = "metric_points"
    __table_args__ = (
        Index("ix_metric_points_series", "measurement", "bond_id", "metric_type", "time"),
    )

    point_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), Identity(), primary_key=True,
    )
    measurement: Mapped[str] = mapped_column(String(100), nullable=False)
    time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    bond_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metric_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fields = mapped_column(FlexJSON, nullable=False)
