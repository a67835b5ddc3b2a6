"""Impact goal models: creation/update request, stored goal, dashboard."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from src.models.common import (
    DecimalStr,
    GoalStatus,
    ImpactBase,
    MetricUnit,
    UTCTimestamp,
    UUIDv7,
    ensure_utc,
    normalize_metric_type,
)


class GoalRequest(ImpactBase):
    """Create or replace a goal definition."""

    bond_id: str = Field(min_length=1, max_length=100)
    project_id: str = Field(min_length=1, max_length=100)
    goal_name: str = Field(min_length=1, max_length=500)
    description: str = ""
    metric_type: str
    target_value: Decimal
    target_unit: MetricUnit
    target_date: datetime
    baseline_value: Decimal | None = None
    baseline_date: datetime | None = None
    verification_method: str | None = None
    reporting_frequency: str | None = None
    kpis: dict[str, Any] | None = None

    @field_validator("metric_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        return normalize_metric_type(v)

    @field_validator("target_date", "baseline_date")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None


class StatusChangeRequest(ImpactBase):
    """Explicit user-driven status change (the only way into CANCELLED)."""

    status: GoalStatus
    comment: str = ""


class ImpactGoal(ImpactBase):
    """A stored goal with its latest progress snapshot."""

    goal_id: UUIDv7
    bond_id: str
    project_id: str
    goal_name: str
    description: str = ""
    metric_type: str
    target_value: DecimalStr
    target_unit: MetricUnit
    target_date: UTCTimestamp
    baseline_value: DecimalStr
    baseline_date: UTCTimestamp
    current_value: DecimalStr
    progress_percentage: DecimalStr
    status: GoalStatus
    kpis: dict[str, Any] = Field(default_factory=dict)
    verification_method: str | None = None
    reporting_frequency: str | None = None
    created_at: UTCTimestamp
    updated_at: UTCTimestamp
    version: int

    @property
    def remaining_value(self) -> Decimal:
        return max(self.target_value - self.current_value, Decimal("0"))

    @classmethod
    def from_row(cls, row: Any) -> ImpactGoal:
        return cls(
            goal_id=row.goal_id,
            bond_id=row.bond_id,
            project_id=row.project_id,
            goal_name=row.goal_name,
            description=row.description or "",
            metric_type=row.metric_type,
            target_value=row.target_value,
            target_unit=MetricUnit(row.target_unit),
            target_date=row.target_date,
            baseline_value=row.baseline_value,
            baseline_date=row.baseline_date,
            current_value=row.current_value,
            progress_percentage=row.progress_percentage,
            status=GoalStatus(row.status),
            kpis=dict(row.kpis or {}),
            verification_method=row.verification_method,
            reporting_frequency=row.reporting_frequency,
            created_at=row.created_at,
            updated_at=row.updated_at,
            version=row.version,
        )


class GoalsDashboard(ImpactBase):
    """Goal health roll-up for one bond."""

    bond_id: str
    total_goals: int
    status_counts: dict[GoalStatus, int]
    achieved_goals: int
    on_track_goals: int
    at_risk_goals: int
    upcoming_deadlines: int
    average_progress: DecimalStr
    success_rate: DecimalStr
    on_track_percentage: DecimalStr
    generated_at: UTCTimestamp
