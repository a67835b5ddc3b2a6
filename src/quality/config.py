"""Data quality scoring configuration.

Weights and bands for the ingestion-time confidence score. Defaults match
the platform's published scoring rules and can be overridden per deployment.
"""

from __future__ import annotations

from pydantic import Field

from src.models.common import DataSourceType, ImpactBase, QualityStatus


class AssessorConfig(ImpactBase):
    """Configuration for the data-quality assessor.

    Controls how much each piece of provenance contributes to the
    confidence score, how scores are banded, and how age maps to timeliness.
    """

    source_weights: dict[DataSourceType, float] = Field(
        default_factory=lambda: {
            DataSourceType.SMART_METER: 0.4,
            DataSourceType.IOT_SENSOR: 0.3,
            DataSourceType.API_INTEGRATION: 0.3,
            DataSourceType.MANUAL_ENTRY: 0.1,
        },
    )
    default_source_weight: float = 0.2

    device_weight: float = 0.2
    location_weight: float = 0.2
    metadata_weight: float = 0.1
    timestamp_weight: float = 0.2

    # Uniform sensor-noise term in [0, jitter_max).
    jitter_max: float = Field(default=0.1, ge=0.0, le=0.2)

    verification_threshold: float = 0.8

    # (minimum score, status), walked in order.
    status_bands: list[tuple[float, QualityStatus]] = Field(
        default_factory=lambda: [
            (0.9, QualityStatus.EXCELLENT),
            (0.8, QualityStatus.GOOD),
            (0.6, QualityStatus.FAIR),
            (0.4, QualityStatus.POOR),
        ],
    )

    # (maximum age in whole hours, timeliness), walked in order.
    timeliness_bands: list[tuple[int, float]] = Field(
        default_factory=lambda: [
            (1, 1.0),
            (24, 0.8),
            (168, 0.5),
        ],
    )
    stale_timeliness: float = 0.2

    verification_methods: dict[DataSourceType, str] = Field(
        default_factory=lambda: {
            DataSourceType.IOT_SENSOR: "AUTOMATIC_SENSOR_READING",
            DataSourceType.SMART_METER: "CALIBRATED_METER",
            DataSourceType.API_INTEGRATION: "EXTERNAL_API",
            DataSourceType.MANUAL_ENTRY: "MANUAL_VERIFICATION_REQUIRED",
        },
    )
    default_verification_method: str = "UNVERIFIED"
