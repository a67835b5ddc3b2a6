"""Metric observation models: submission, data quality, stored record."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from src.models.common import (
    DataSourceType,
    DecimalStr,
    ImpactBase,
    MetricType,
    MetricUnit,
    QualityStatus,
    UTCTimestamp,
    UUIDv7,
    ensure_utc,
    normalize_metric_type,
)


class DataQuality(ImpactBase, frozen=True):
    """Quality assessment computed once at ingestion and never recomputed."""

    confidence_score: float = Field(ge=0.0, le=1.0)
    is_verified: bool
    verification_method: str
    data_points: int = 1
    standard_deviation: float | None = None
    quality_status: QualityStatus
    quality_metrics: dict[str, float] = Field(default_factory=dict)


class MetricSubmission(ImpactBase):
    """An incoming observation before validation and scoring.

    Field presence is checked by the assessor (completeness), range rules
    by the metric service, so nothing here is strictly required beyond types.
    """

    bond_id: str = Field(min_length=1, max_length=100)
    project_id: str = Field(min_length=1, max_length=100)
    metric_type: str
    value: Decimal
    unit: MetricUnit
    timestamp: datetime
    source_type: DataSourceType
    source_id: str | None = None
    device_id: str | None = None
    location: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metric_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        return normalize_metric_type(v)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("value")
    @classmethod
    def _finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Metric value must be a finite number")
        return v


class ImpactMetric(ImpactBase):
    """A stored metric observation."""

    metric_id: UUIDv7
    bond_id: str
    project_id: str
    metric_type: str
    value: DecimalStr
    unit: MetricUnit
    timestamp: UTCTimestamp
    source_type: DataSourceType
    source_id: str | None = None
    device_id: str | None = None
    location: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    data_quality: DataQuality
    notarization_receipt: str | None = None
    notarized_at: UTCTimestamp | None = None
    created_at: UTCTimestamp
    updated_at: UTCTimestamp

    @classmethod
    def from_row(cls, row: Any) -> ImpactMetric:
        return cls(
            metric_id=row.metric_id,
            bond_id=row.bond_id,
            project_id=row.project_id,
            metric_type=row.metric_type,
            value=row.value,
            unit=MetricUnit(row.unit),
            timestamp=row.timestamp,
            source_type=DataSourceType(row.source_type),
            source_id=row.source_id,
            device_id=row.device_id,
            location=row.location,
            metadata=dict(row.metadata_json or {}),
            data_quality=DataQuality.model_validate(row.data_quality),
            notarization_receipt=row.notarization_receipt,
            notarized_at=row.notarized_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class BondMetricStats(ImpactBase):
    """Headline counts for one bond's metrics."""

    bond_id: str
    total_metrics: int
    metric_types: int
    generated_at: UTCTimestamp


# Units accepted per well-known metric type. Types outside this table are
# open-enumeration extensions and accept any unit.
COMPATIBLE_UNITS: dict[str, frozenset[MetricUnit]] = {
    MetricType.CARBON_EMISSIONS_REDUCTION: frozenset({
        MetricUnit.TONS_CO2, MetricUnit.TONS, MetricUnit.KILOGRAMS,
    }),
    MetricType.SOLAR_ENERGY_GENERATED: frozenset({
        MetricUnit.MEGAWATT_HOURS, MetricUnit.KILOWATT_HOURS,
    }),
    MetricType.WIND_ENERGY_GENERATED: frozenset({
        MetricUnit.MEGAWATT_HOURS, MetricUnit.KILOWATT_HOURS,
    }),
    MetricType.ENERGY_SAVED: frozenset({
        MetricUnit.MEGAWATT_HOURS, MetricUnit.KILOWATT_HOURS,
    }),
    MetricType.WATER_SAVED: frozenset({MetricUnit.CUBIC_METERS, MetricUnit.LITERS}),
    MetricType.WATER_TREATED: frozenset({MetricUnit.CUBIC_METERS, MetricUnit.LITERS}),
    MetricType.WASTE_DIVERTED: frozenset({MetricUnit.TONS, MetricUnit.KILOGRAMS}),
    MetricType.AIR_QUALITY_PM25: frozenset({MetricUnit.PPM}),
    MetricType.LAND_RESTORED: frozenset({MetricUnit.HECTARES, MetricUnit.SQUARE_METERS}),
    MetricType.JOBS_CREATED: frozenset({MetricUnit.JOBS, MetricUnit.COUNT}),
    MetricType.HOUSEHOLDS_SERVED: frozenset({MetricUnit.HOUSEHOLDS, MetricUnit.COUNT}),
}


def is_unit_compatible(metric_type: str, unit: MetricUnit) -> bool:
    allowed = COMPATIBLE_UNITS.get(metric_type)
    return allowed is None or unit in allowed
