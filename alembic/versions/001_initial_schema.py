"""Initial schema: impact metrics, impact goals, metric points.

On PostgreSQL with the timescaledb extension available, metric_points is
promoted to a hypertable partitioned on ``time``.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Metric records (value/unit/quality immutable) --
    op.create_table(
        "impact_metrics",
        sa.Column("metric_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("bond_id", sa.String(100), nullable=False),
        sa.Column("project_id", sa.String(100), nullable=False),
        sa.Column("metric_type", sa.String(100), nullable=False),
        sa.Column("value", sa.String(64), nullable=False),
        sa.Column("unit", sa.String(50), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_type", sa.String(50), nullable=False),
        sa.Column("source_id", sa.String(255), nullable=True),
        sa.Column("device_id", sa.String(255), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("metadata_json", JSONB, nullable=False, server_default="{}"),
        sa.Column("data_quality", JSONB, nullable=False),
        sa.Column("quality_status", sa.String(20), nullable=False),
        sa.Column("notarization_receipt", sa.String(255), nullable=True),
        sa.Column("notarized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_impact_metrics_bond_id", "impact_metrics", ["bond_id"])
    op.create_index("ix_impact_metrics_project_id", "impact_metrics", ["project_id"])
    op.create_index("ix_impact_metrics_metric_type", "impact_metrics", ["metric_type"])
    op.create_index("ix_impact_metrics_timestamp", "impact_metrics", ["timestamp"])
    op.create_index("ix_impact_metrics_quality_status", "impact_metrics", ["quality_status"])
    op.create_index(
        "ix_impact_metrics_bond_timestamp", "impact_metrics", ["bond_id", "timestamp"],
    )
    op.create_index(
        "ix_impact_metrics_bond_type_timestamp",
        "impact_metrics",
        ["bond_id", "metric_type", "timestamp"],
    )

    # -- Goals (optimistic versioning) --
    op.create_table(
        "impact_goals",
        sa.Column("goal_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("bond_id", sa.String(100), nullable=False),
        sa.Column("project_id", sa.String(100), nullable=False),
        sa.Column("goal_name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("metric_type", sa.String(100), nullable=False),
        sa.Column("target_value", sa.String(64), nullable=False),
        sa.Column("target_unit", sa.String(50), nullable=False),
        sa.Column("target_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("baseline_value", sa.String(64), nullable=False),
        sa.Column("baseline_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_value", sa.String(64), nullable=False),
        sa.Column("progress_percentage", sa.String(64), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("kpis", JSONB, nullable=False, server_default="{}"),
        sa.Column("verification_method", sa.String(255), nullable=True),
        sa.Column("reporting_frequency", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.UniqueConstraint("bond_id", "metric_type", name="uq_impact_goal_bond_metric_type"),
    )
    op.create_index("ix_impact_goals_bond_id", "impact_goals", ["bond_id"])
    op.create_index("ix_impact_goals_project_id", "impact_goals", ["project_id"])
    op.create_index("ix_impact_goals_target_date", "impact_goals", ["target_date"])
    op.create_index("ix_impact_goals_status", "impact_goals", ["status"])

    # -- Time series (APPEND-ONLY) --
    op.create_table(
        "metric_points",
        sa.Column("point_id", sa.BigInteger, sa.Identity(), nullable=False),
        sa.Column("measurement", sa.String(100), nullable=False),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("record_id", sa.String(64), nullable=True),
        sa.Column("bond_id", sa.String(100), nullable=True),
        sa.Column("project_id", sa.String(100), nullable=True),
        sa.Column("metric_type", sa.String(100), nullable=True),
        sa.Column("source_type", sa.String(50), nullable=True),
        sa.Column("device_id", sa.String(255), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("fields", JSONB, nullable=False),
        # Hypertables need the partition column in every unique key.
        sa.PrimaryKeyConstraint("point_id", "time", name="pk_metric_points"),
    )
    op.create_index("ix_metric_points_record_id", "metric_points", ["record_id"])
    op.create_index(
        "ix_metric_points_series",
        "metric_points",
        ["measurement", "bond_id", "metric_type", "time"],
    )

    op.execute(
        """
        DO $$
        BEGIN
            IF EXISTS (SELECT 1 FROM pg_available_extensions WHERE name = 'timescaledb') THEN
                CREATE EXTENSION IF NOT EXISTS timescaledb;
                PERFORM create_hypertable('metric_points', 'time', migrate_data => true);
            END IF;
        END
        $$;
        """
    )


def downgrade() -> None:
    op.drop_table("metric_points")
    op.drop_table("impact_goals")
    op.drop_table("impact_metrics")
