"""Impact goal service: goal lifecycle, on-demand evaluation, dashboard."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import structlog

from src.db.tables import ImpactGoalRow
from src.engine.goal_progress import GoalProgressEngine, build_dashboard
from src.errors import ConflictError, GoalNotFoundError, ValidationError
from src.models.common import (
    ACTIVE_GOAL_STATUSES,
    COMPLETED_GOAL_STATUSES,
    GoalStatus,
    Page,
    new_uuid7,
    normalize_metric_type,
    utc_now,
)
from src.models.goal import GoalRequest, GoalsDashboard, ImpactGoal, StatusChangeRequest
from src.models.metric import is_unit_compatible
from src.repositories.goals import GoalRepository

logger = structlog.get_logger(__name__)

# 10 calendar years, leap days included.
MAX_TARGET_HORIZON = timedelta(days=3653)


def validate_goal_request(request: GoalRequest, now: datetime) -> None:
    """Raises ValidationError when the goal definition is not acceptable."""
    if request.target_value <= 0:
        raise ValidationError("Target value must be positive")
    if request.target_date <= now:
        raise ValidationError("Target date must be in the future")
    if request.target_date > now + MAX_TARGET_HORIZON:
        raise ValidationError("Target date cannot be more than 10 years in the future")
    if request.baseline_value is not None and request.baseline_value < 0:
        raise ValidationError("Baseline value cannot be negative")
    if request.baseline_date is not None and request.baseline_date > request.target_date:
        raise ValidationError("Baseline date cannot be after target date")
    if not is_unit_compatible(request.metric_type, request.target_unit):
        raise ValidationError(
            f"Invalid unit {request.target_unit} for metric type {request.metric_type}"
        )


class GoalService:
    def __init__(
        self,
        goals: GoalRepository,
        engine: GoalProgressEngine,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._goals = goals
        self._engine = engine
        self._clock = clock

    # ---------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------

    async def create_goal(self, request: GoalRequest, *, correlation_id: str) -> ImpactGoal:
        """Validate and store a new goal in NOT_STARTED with zero progress.

        Raises:
            ValidationError: invalid target, dates or unit.
            ConflictError: the bond already has a goal for this metric type.
        """
        log = logger.bind(correlation_id=correlation_id, bond_id=request.bond_id)
        now = self._clock()
        validate_goal_request(request, now)

        goal = ImpactGoal(
            goal_id=new_uuid7(),
            bond_id=request.bond_id,
            project_id=request.project_id,
            goal_name=request.goal_name,
            description=request.description,
            metric_type=request.metric_type,
            target_value=request.target_value,
            target_unit=request.target_unit,
            target_date=request.target_date,
            baseline_value=request.baseline_value or Decimal("0"),
            baseline_date=request.baseline_date or now,
            current_value=Decimal("0"),
            progress_percentage=Decimal("0"),
            status=GoalStatus.NOT_STARTED,
            kpis=request.kpis or {},
            verification_method=request.verification_method,
            reporting_frequency=request.reporting_frequency,
            created_at=now,
            updated_at=now,
            version=1,
        )
        row = await self._goals.create(goal)
        log.info("goal_created", goal_id=str(row.goal_id), metric_type=row.metric_type)
        return ImpactGoal.from_row(row)

    async def update_goal(
        self, goal_id: UUID, request: GoalRequest, *, correlation_id: str,
    ) -> ImpactGoal:
        """Replace a goal's definition and re-evaluate it.

        Bond and metric type may change only if the new pair is still unique.
        Retargeting drops the old series' progress: the goal restarts from
        zero before it is evaluated against the new series.
        """
        log = logger.bind(correlation_id=correlation_id, goal_id=str(goal_id))
        row = await self._require(goal_id)
        validate_goal_request(request, self._clock())

        retargeted = (request.bond_id, request.metric_type) != (row.bond_id, row.metric_type)
        if retargeted:
            if await self._goals.exists_for(request.bond_id, request.metric_type):
                raise ConflictError(
                    f"Goal for {request.metric_type} already exists for bond {request.bond_id}"
                )

        changes: dict[str, object] = {
            "bond_id": request.bond_id,
            "project_id": request.project_id,
            "goal_name": request.goal_name,
            "description": request.description,
            "metric_type": request.metric_type,
            "target_value": request.target_value,
            "target_unit": request.target_unit.value,
            "target_date": request.target_date,
            "baseline_value": request.baseline_value or Decimal("0"),
            "verification_method": request.verification_method,
            "reporting_frequency": request.reporting_frequency,
        }
        if request.baseline_date is not None:
            changes["baseline_date"] = request.baseline_date
        if request.kpis is not None:
            changes["kpis"] = request.kpis
        if retargeted:
            changes["current_value"] = Decimal("0")
            changes["progress_percentage"] = Decimal("0")
            if row.status != GoalStatus.CANCELLED.value:
                changes["status"] = GoalStatus.NOT_STARTED.value
        await self._goals.update(row, **changes)

        await self._engine.evaluate(row)
        log.info("goal_updated")
        return ImpactGoal.from_row(row)

    async def change_status(
        self, goal_id: UUID, change: StatusChangeRequest, *, correlation_id: str,
    ) -> ImpactGoal:
        """Explicit user status change, recorded in kpis["status_history"].

        CANCELLED is terminal: a cancelled goal rejects further changes.
        """
        log = logger.bind(correlation_id=correlation_id, goal_id=str(goal_id))
        row = await self._require(goal_id)
        previous = GoalStatus(row.status)
        if previous == GoalStatus.CANCELLED:
            raise ValidationError("A cancelled goal cannot change status")

        now = self._clock()
        kpis = dict(row.kpis or {})
        history = list(kpis.get("status_history", []))
        history.append({
            "from": previous.value,
            "to": change.status.value,
            "comment": change.comment,
            "changed_at": now.isoformat(),
        })
        kpis["status_history"] = history
        await self._goals.update(row, status=change.status.value, kpis=kpis)
        log.info("goal_status_changed", previous=previous, status=change.status)
        return ImpactGoal.from_row(row)

    async def delete_goal(self, goal_id: UUID, *, correlation_id: str) -> None:
        if not await self._goals.delete(goal_id):
            raise GoalNotFoundError(goal_id)
        logger.bind(correlation_id=correlation_id).info("goal_deleted", goal_id=str(goal_id))

    async def evaluate_goal(self, goal_id: UUID, *, correlation_id: str) -> ImpactGoal:
        """Run the progress engine for one goal now."""
        row = await self._require(goal_id)
        updated = await self._engine.evaluate(row)
        logger.bind(correlation_id=correlation_id).info(
            "goal_evaluated", goal_id=str(goal_id), updated=updated, status=row.status,
        )
        return ImpactGoal.from_row(row)

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    async def get_goal(self, goal_id: UUID) -> ImpactGoal:
        return ImpactGoal.from_row(await self._require(goal_id))

    async def list_by_bond(
        self, bond_id: str, *, page: int = 0, size: int = 50,
    ) -> Page[ImpactGoal]:
        rows, total = await self._goals.list_by_bond(bond_id, page=page, size=size)
        return self._page(rows, total, page, size)

    async def list_by_bond_and_status(
        self, bond_id: str, status: GoalStatus, *, page: int = 0, size: int = 50,
    ) -> Page[ImpactGoal]:
        rows, total = await self._goals.list_by_bond_and_status(
            bond_id, status.value, page=page, size=size,
        )
        return self._page(rows, total, page, size)

    async def get_by_bond_and_type(self, bond_id: str, metric_type: str) -> list[ImpactGoal]:
        try:
            normalized = normalize_metric_type(metric_type)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        row = await self._goals.get_by_bond_and_type(bond_id, normalized)
        return [] if row is None else [ImpactGoal.from_row(row)]

    async def upcoming(self, bond_id: str, *, limit: int = 10) -> list[ImpactGoal]:
        rows = await self._goals.upcoming(bond_id, self._clock(), limit=limit)
        return [ImpactGoal.from_row(row) for row in rows]

    async def active(self, bond_id: str) -> list[ImpactGoal]:
        rows = await self._goals.list_by_statuses(
            bond_id, [s.value for s in ACTIVE_GOAL_STATUSES],
        )
        return [ImpactGoal.from_row(row) for row in rows]

    async def overdue(self, bond_id: str) -> list[ImpactGoal]:
        """Past their target date without being achieved (or cancelled)."""
        excluded = [s.value for s in COMPLETED_GOAL_STATUSES | {GoalStatus.CANCELLED}]
        rows = await self._goals.list_due_before(bond_id, self._clock(), excluded)
        return [ImpactGoal.from_row(row) for row in rows]

    async def count(self, bond_id: str, status: GoalStatus | None = None) -> int:
        return await self._goals.count_by_bond(
            bond_id, None if status is None else status.value,
        )

    async def has_active_goals(self, bond_id: str) -> bool:
        return bool(await self.active(bond_id))

    async def grouped_by_metric_type(self, bond_id: str) -> dict[str, list[ImpactGoal]]:
        grouped: dict[str, list[ImpactGoal]] = {}
        for row in await self._goals.list_all_for_bond(bond_id):
            grouped.setdefault(row.metric_type, []).append(ImpactGoal.from_row(row))
        return grouped

    async def dashboard(self, bond_id: str) -> GoalsDashboard:
        rows = await self._goals.list_all_for_bond(bond_id)
        goals = [ImpactGoal.from_row(row) for row in rows]
        return build_dashboard(bond_id, goals, self._clock())

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    async def _require(self, goal_id: UUID) -> ImpactGoalRow:
        row = await self._goals.get(goal_id)
        if row is None:
            raise GoalNotFoundError(goal_id)
        return row

    @staticmethod
    def _page(rows: list, total: int, page: int, size: int) -> Page[ImpactGoal]:
        return Page[ImpactGoal](
            items=[ImpactGoal.from_row(row) for row in rows],
            total=total,
            page=page,
            size=size,
        )
