"""Notarization sink capability and receipt model."""

from __future__ import annotations

import hashlib
import json
from typing import Protocol, runtime_checkable

from pydantic import Field

from src.models.common import ImpactBase, UTCTimestamp, utc_now
from src.models.metric import ImpactMetric


class NotarizationReceipt(ImpactBase, frozen=True):
    """Opaque proof that a record hash reached the ledger."""

    record_id: str
    payload_hash: str
    transaction_hash: str
    recorded_at: UTCTimestamp = Field(default_factory=utc_now)


@runtime_checkable
class NotarizationSink(Protocol):
    """Anything that can notarize a record hash.

    Implementations raise NotarizationError on failure; callers decide
    whether that matters (ingestion never lets it propagate).
    """

    async def submit(
        self, record_id: str, payload_hash: str, *, correlation_id: str,
    ) -> NotarizationReceipt:
        ...


def metric_payload_hash(metric: ImpactMetric) -> str:
    """SHA-256 over the immutable facts of a metric.

    Only fields fixed at ingestion are hashed, so attaching the receipt later
    does not change the hash.
    """
    payload = {
        "metric_id": str(metric.metric_id),
        "bond_id": metric.bond_id,
        "project_id": metric.project_id,
        "metric_type": metric.metric_type,
        "value": str(metric.value),
        "unit": metric.unit.value,
        "timestamp": metric.timestamp.isoformat(),
        "source_type": metric.source_type.value,
        "confidence_score": metric.data_quality.confidence_score,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
