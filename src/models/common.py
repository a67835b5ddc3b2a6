"""Shared types, enums, and base models used across the impact monitoring domain."""

import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, PlainSerializer
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]
# Quantities never travel as binary floats: serialized as decimal strings.
DecimalStr = Annotated[
    Decimal,
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]


# --- Shared enums ---


class MetricType(StrEnum):
    """Well-known impact metric categories.

    The set is open: any upper-case identifier is accepted as a metric type,
    these are the ones with known unit rules.
    """

    CARBON_EMISSIONS_REDUCTION = "CARBON_EMISSIONS_REDUCTION"
    SOLAR_ENERGY_GENERATED = "SOLAR_ENERGY_GENERATED"
    WIND_ENERGY_GENERATED = "WIND_ENERGY_GENERATED"
    ENERGY_SAVED = "ENERGY_SAVED"
    WATER_SAVED = "WATER_SAVED"
    WATER_TREATED = "WATER_TREATED"
    WASTE_DIVERTED = "WASTE_DIVERTED"
    AIR_QUALITY_PM25 = "AIR_QUALITY_PM25"
    LAND_RESTORED = "LAND_RESTORED"
    JOBS_CREATED = "JOBS_CREATED"
    HOUSEHOLDS_SERVED = "HOUSEHOLDS_SERVED"


class MetricUnit(StrEnum):
    """Units a metric value or goal target may be expressed in."""

    TONS_CO2 = "TONS_CO2"
    MEGAWATT_HOURS = "MEGAWATT_HOURS"
    KILOWATT_HOURS = "KILOWATT_HOURS"
    CUBIC_METERS = "CUBIC_METERS"
    LITERS = "LITERS"
    KILOGRAMS = "KILOGRAMS"
    TONS = "TONS"
    PPM = "PPM"
    COUNT = "COUNT"
    PERCENTAGE = "PERCENTAGE"
    SQUARE_METERS = "SQUARE_METERS"
    HECTARES = "HECTARES"
    JOBS = "JOBS"
    HOUSEHOLDS = "HOUSEHOLDS"
    DOLLARS = "DOLLARS"
    LOCAL_CURRENCY = "LOCAL_CURRENCY"


class DataSourceType(StrEnum):
    """Where a metric observation came from."""

    IOT_SENSOR = "IOT_SENSOR"
    MANUAL_ENTRY = "MANUAL_ENTRY"
    API_INTEGRATION = "API_INTEGRATION"
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
    CALCULATED = "CALCULATED"
    EXTERNAL_SYSTEM = "EXTERNAL_SYSTEM"
    SMART_METER = "SMART_METER"
    WEATHER_STATION = "WEATHER_STATION"


class QualityStatus(StrEnum):
    """Qualitative banding of a confidence score."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    UNACCEPTABLE = "UNACCEPTABLE"


class GoalStatus(StrEnum):
    """Goal health states. CANCELLED is terminal and set only by a user."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    ON_TRACK = "ON_TRACK"
    AT_RISK = "AT_RISK"
    BEHIND_SCHEDULE = "BEHIND_SCHEDULE"
    ACHIEVED = "ACHIEVED"
    EXCEEDED = "EXCEEDED"
    CANCELLED = "CANCELLED"


ACTIVE_GOAL_STATUSES: frozenset[GoalStatus] = frozenset({
    GoalStatus.NOT_STARTED,
    GoalStatus.IN_PROGRESS,
    GoalStatus.ON_TRACK,
    GoalStatus.AT_RISK,
})

COMPLETED_GOAL_STATUSES: frozenset[GoalStatus] = frozenset({
    GoalStatus.ACHIEVED,
    GoalStatus.EXCEEDED,
})


_METRIC_TYPE_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{1,99}$")


def normalize_metric_type(value: str) -> str:
    """Upper-case and validate an open-enumeration metric type name."""
    normalized = value.strip().upper().replace("-", "_").replace(" ", "_")
    if not _METRIC_TYPE_PATTERN.fullmatch(normalized):
        raise ValueError(f"Invalid metric type: {value!r}")
    return normalized


# --- Base model ---


class ImpactBase(BaseModel):
    """Base model with common configuration for all domain Pydantic models."""

    model_config = {
        "populate_by_name": True,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }


T = TypeVar("T")


class Page(ImpactBase, Generic[T]):
    """One page of a paginated listing."""

    items: list[T]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size
