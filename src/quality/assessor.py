"""Ingestion-time data quality assessment.

Scores one metric submission from its provenance (source type, device,
location, metadata, timestamp) into a DataQuality record. The only
non-deterministic input is a bounded sensor-noise term drawn from an
injectable random.Random, so tests can seed it or switch it off.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime

from src.models.common import DataSourceType, QualityStatus, utc_now
from src.models.metric import DataQuality, MetricSubmission
from src.quality.config import AssessorConfig


# bond id, metric type, value, unit, timestamp
_REQUIRED_FIELDS: tuple[str, ...] = ("bond_id", "metric_type", "value", "unit", "timestamp")


def _present(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class DataQualityAssessor:
    """Scores metric submissions. Never raises.

    score = source weight
            + device (0.2) + location (0.2) + metadata (0.1)
            + timestamp not in the future (0.2)
            + jitter in [0, jitter_max)
    clamped to [0, 1]; verified iff score > 0.8.
    """

    def __init__(
        self,
        config: AssessorConfig | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or AssessorConfig()
        self._rng = rng or random.Random()
        self._clock = clock

    def assess(self, submission: MetricSubmission) -> DataQuality:
        now = self._clock()
        score = self.confidence_score(submission, now)
        status = self.quality_status(score)
        return DataQuality(
            confidence_score=score,
            is_verified=score > self._config.verification_threshold,
            verification_method=self.verification_method(
                getattr(submission, "source_type", None),
            ),
            data_points=1,
            # One observation carries no dispersion of its own.
            standard_deviation=0.0,
            quality_status=status,
            quality_metrics={
                "completeness": self.completeness(submission),
                "timeliness": self.timeliness(getattr(submission, "timestamp", None), now),
                "accuracy": score,
                "consistency": 1.0,
            },
        )

    # ---------------------------------------------------------------
    # Score components
    # ---------------------------------------------------------------

    def confidence_score(self, submission: MetricSubmission, now: datetime) -> float:
        cfg = self._config
        source_type = getattr(submission, "source_type", None)
        score = cfg.source_weights.get(source_type, cfg.default_source_weight)

        if _present(getattr(submission, "device_id", None)):
            score += cfg.device_weight
        if _present(getattr(submission, "location", None)):
            score += cfg.location_weight
        if getattr(submission, "metadata", None):
            score += cfg.metadata_weight

        timestamp = getattr(submission, "timestamp", None)
        if timestamp is not None and timestamp <= now:
            score += cfg.timestamp_weight

        score += self._rng.random() * cfg.jitter_max
        return max(0.0, min(1.0, score))

    def quality_status(self, score: float) -> QualityStatus:
        for minimum, status in self._config.status_bands:
            if score >= minimum:
                return status
        return QualityStatus.UNACCEPTABLE

    def verification_method(self, source_type: DataSourceType | None) -> str:
        return self._config.verification_methods.get(
            source_type, self._config.default_verification_method,
        )

    @staticmethod
    def completeness(submission: MetricSubmission) -> float:
        filled = sum(
            1 for name in _REQUIRED_FIELDS if _present(getattr(submission, name, None))
        )
        return filled / len(_REQUIRED_FIELDS)

    def timeliness(self, timestamp: datetime | None, now: datetime) -> float:
        if timestamp is None:
            return self._config.stale_timeliness
        age_hours = int((now - timestamp).total_seconds() // 3600)
        for max_hours, value in self._config.timeliness_bands:
            if age_hours <= max_hours:
                return value
        return self._config.stale_timeliness
