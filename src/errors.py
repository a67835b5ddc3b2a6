"""Error taxonomy for the impact monitoring core.

The API layer maps each class to a status code (see src/api/main.py);
everything below the API raises these and nothing HTTP-specific.
"""

from __future__ import annotations


class ImpactMonitoringError(Exception):
    """Base class. ``code`` is the machine-readable error identifier."""

    code = "IMPACT_MONITORING_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ImpactMonitoringError):
    """Rejected input. Never retried."""

    code = "VALIDATION_ERROR"


class NotFoundError(ImpactMonitoringError):
    code = "NOT_FOUND"


class MetricNotFoundError(NotFoundError):
    code = "METRIC_NOT_FOUND"

    def __init__(self, metric_id: object) -> None:
        super().__init__(f"Impact metric not found: {metric_id}")
        self.metric_id = metric_id


class GoalNotFoundError(NotFoundError):
    code = "GOAL_NOT_FOUND"

    def __init__(self, goal_id: object) -> None:
        super().__init__(f"Impact goal not found: {goal_id}")
        self.goal_id = goal_id


class ConflictError(ImpactMonitoringError):
    """Duplicate record or a write against a stale version."""

    code = "CONFLICT"


class StorageError(ImpactMonitoringError):
    """A backing store was unreachable or timed out.

    On the ingestion path this always propagates; read callers may retry
    when ``retryable`` is set.
    """

    code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class NotarizationError(ImpactMonitoringError):
    """The notarization sink rejected or failed a submission.

    Only ever logged: ingestion callers never see it.
    """

    code = "NOTARIZATION_FAILED"
