"""Windowed aggregation request/result models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import Field, field_validator, model_validator

from src.models.common import (
    DecimalStr,
    ImpactBase,
    UTCTimestamp,
    ensure_utc,
    normalize_metric_type,
)
from src.timeseries.intervals import parse_interval


class AggregationFunction(StrEnum):
    """Per-bucket reducer."""

    MEAN = "mean"
    SUM = "sum"
    MIN = "min"
    MAX = "max"

    @classmethod
    def _missing_(cls, value: object) -> AggregationFunction | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("avg", "average"):
                return cls.MEAN
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class AggregationRequest(ImpactBase):
    """Aggregate one bond's metric type over [start_time, end_time)."""

    bond_id: str = Field(min_length=1)
    project_id: str | None = None
    metric_type: str
    start_time: datetime
    end_time: datetime
    interval: str = "1h"
    aggregation_function: AggregationFunction = AggregationFunction.MEAN

    @field_validator("metric_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        return normalize_metric_type(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("aggregation_function", mode="before")
    @classmethod
    def _function_alias(cls, v: object) -> object:
        if isinstance(v, str):
            return AggregationFunction(v)
        return v

    @field_validator("interval")
    @classmethod
    def _valid_interval(cls, v: str) -> str:
        parse_interval(v)
        return v.strip().lower()

    @model_validator(mode="after")
    def _ordered(self) -> AggregationRequest:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class TimeSeriesPoint(ImpactBase):
    """One bucket of an aggregation: bucket start, reduced value, raw point count."""

    timestamp: UTCTimestamp
    value: DecimalStr
    count: int


class AggregationStatistics(ImpactBase):
    """Second-pass dispersion over the bucket values.

    variance/standard_deviation are population figures (single bucket -> 0);
    the sample_* figures divide by n-1 and are 0 below two buckets.
    """

    variance: float = 0.0
    standard_deviation: float = 0.0
    sample_variance: float = 0.0
    sample_standard_deviation: float = 0.0


class AggregationResult(ImpactBase):
    bond_id: str
    project_id: str | None = None
    metric_type: str
    interval: str
    aggregation_function: AggregationFunction
    start_time: UTCTimestamp
    end_time: UTCTimestamp
    total_value: DecimalStr = Decimal("0")
    average_value: DecimalStr = Decimal("0")
    min_value: DecimalStr = Decimal("0")
    max_value: DecimalStr = Decimal("0")
    data_point_count: int = 0
    time_series: list[TimeSeriesPoint] = Field(default_factory=list)
    statistics: AggregationStatistics = Field(default_factory=AggregationStatistics)
