"""Goal progress engine: the goal status state machine.

compute_progress()  - baseline-relative progress, clamped and quantized
derive_status()     - progress + elapsed time -> GoalStatus
build_dashboard()   - roll-up of a bond's goals
GoalProgressEngine  - reads the aggregator summary, writes changed goals

Pure functions take ``now`` explicitly; only the engine touches storage.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from src.db.tables import ImpactGoalRow
from src.models.common import (
    COMPLETED_GOAL_STATUSES,
    GoalStatus,
    ensure_utc,
    utc_now,
)
from src.models.goal import GoalsDashboard, ImpactGoal
from src.repositories.goals import GoalRepository
from src.timeseries.aggregator import TimeSeriesAggregator

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")

EXCEEDED_RATIO = 1.1
ON_TRACK_RATIO = 0.9
AT_RISK_RATIO = 0.7

UPCOMING_WINDOW = timedelta(days=30)


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def compute_progress(current: Decimal, baseline: Decimal, target: Decimal) -> Decimal:
    """Percent of the baseline-to-target distance covered, in [0, 100].

    A goal whose target equals its baseline has no distance to cover and
    reports 0.
    """
    if target == baseline:
        return _quantize(Decimal("0"))
    raw = (current - baseline) / (target - baseline) * _HUNDRED
    return _quantize(min(max(raw, Decimal("0")), _HUNDRED))


def derive_status(
    progress: Decimal,
    *,
    created_at: datetime,
    target_date: datetime,
    now: datetime,
) -> GoalStatus:
    """Status from progress and how much of the goal's time has elapsed.

    Day counts are whole days (``timedelta.days``), matching the goal's
    reporting granularity.
    """
    if progress >= _HUNDRED:
        return GoalStatus.ACHIEVED

    created_at = ensure_utc(created_at)
    target_date = ensure_utc(target_date)
    now = ensure_utc(now)

    if target_date < now:
        return GoalStatus.BEHIND_SCHEDULE

    total_days = (target_date - created_at).days
    if total_days <= 0:
        return GoalStatus.IN_PROGRESS

    elapsed_days = (now - created_at).days
    expected = elapsed_days / total_days * 100
    if expected <= 0:
        return GoalStatus.IN_PROGRESS

    ratio = float(progress) / expected
    if ratio >= EXCEEDED_RATIO:
        return GoalStatus.EXCEEDED
    if ratio >= ON_TRACK_RATIO:
        return GoalStatus.ON_TRACK
    if ratio >= AT_RISK_RATIO:
        return GoalStatus.AT_RISK
    return GoalStatus.BEHIND_SCHEDULE


@dataclass(frozen=True)
class ProgressSnapshot:
    """The three fields evaluation is allowed to change."""

    current_value: Decimal
    progress_percentage: Decimal
    status: GoalStatus


def evaluate_snapshot(
    goal: ImpactGoal,
    summary: Mapping[str, Decimal],
    now: datetime,
) -> ProgressSnapshot | None:
    """Next snapshot for ``goal``, or None when evaluation must leave it alone.

    None for CANCELLED goals and for goals with no data of their metric type.
    """
    if goal.status == GoalStatus.CANCELLED:
        return None
    current = summary.get(goal.metric_type)
    if current is None:
        return None
    progress = compute_progress(current, goal.baseline_value, goal.target_value)
    status = derive_status(
        progress,
        created_at=goal.created_at,
        target_date=goal.target_date,
        now=now,
    )
    return ProgressSnapshot(current_value=current, progress_percentage=progress, status=status)


def _changed(goal: ImpactGoal, snapshot: ProgressSnapshot) -> bool:
    return (
        goal.current_value != snapshot.current_value
        or goal.progress_percentage != snapshot.progress_percentage
        or goal.status != snapshot.status
    )


def build_dashboard(
    bond_id: str, goals: Sequence[ImpactGoal], now: datetime,
) -> GoalsDashboard:
    """Status counts, mean progress and upcoming deadlines for one bond."""
    total = len(goals)
    status_counts = {status: 0 for status in GoalStatus}
    for goal in goals:
        status_counts[goal.status] += 1

    achieved = sum(status_counts[s] for s in COMPLETED_GOAL_STATUSES)
    at_risk = status_counts[GoalStatus.AT_RISK] + status_counts[GoalStatus.BEHIND_SCHEDULE]
    on_track = status_counts[GoalStatus.ON_TRACK]

    horizon = now + UPCOMING_WINDOW
    upcoming = sum(
        1
        for goal in goals
        if now < goal.target_date < horizon and goal.status not in COMPLETED_GOAL_STATUSES
    )

    def _percent(count: int) -> Decimal:
        if total == 0:
            return _quantize(Decimal("0"))
        return _quantize(Decimal(count) * _HUNDRED / Decimal(total))

    progress_sum = sum((goal.progress_percentage for goal in goals), Decimal("0"))
    average = _quantize(progress_sum / Decimal(max(total, 1)))

    return GoalsDashboard(
        bond_id=bond_id,
        total_goals=total,
        status_counts=status_counts,
        achieved_goals=achieved,
        on_track_goals=on_track,
        at_risk_goals=at_risk,
        upcoming_deadlines=upcoming,
        average_progress=average,
        success_rate=_percent(achieved),
        on_track_percentage=_percent(on_track + achieved),
        generated_at=now,
    )


class GoalProgressEngine:
    """Evaluates stored goals against the aggregator's all-time summary."""

    def __init__(
        self,
        goals: GoalRepository,
        aggregator: TimeSeriesAggregator,
        *,
        clock: Callable[[], datetime] = utc_now,
        timeout: float | None = None,
    ) -> None:
        self._goals = goals
        self._aggregator = aggregator
        self._clock = clock
        self._timeout = timeout

    async def evaluate(self, row: ImpactGoalRow) -> bool:
        """Re-evaluate one goal; True when a new snapshot was written.

        Raises:
            StorageError: the summary query failed or timed out.
            ConflictError: the goal was modified concurrently.
        """
        goal = ImpactGoal.from_row(row)
        if goal.status == GoalStatus.CANCELLED:
            return False

        summary = await self._aggregator.summarize(goal.bond_id, timeout=self._timeout)
        snapshot = evaluate_snapshot(goal, summary, self._clock())
        if snapshot is None:
            logger.debug("No %s data for goal %s", goal.metric_type, goal.goal_id)
            return False
        if not _changed(goal, snapshot):
            return False

        await self._goals.save_progress(
            row,
            current_value=snapshot.current_value,
            progress_percentage=snapshot.progress_percentage,
            status=snapshot.status.value,
        )
        logger.info(
            "Goal %s: %s%% -> %s (current %s)",
            goal.goal_id, snapshot.progress_percentage, snapshot.status, snapshot.current_value,
        )
        return True
