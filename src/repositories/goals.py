"""Impact goal repository: one goal per (bond, metric type), versioned writes."""

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from src.db.tables import ImpactGoalRow
from src.errors import ConflictError
from src.models.common import utc_now
from src.models.goal import ImpactGoal
from src.repositories.base import paginate


class GoalRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, goal: ImpactGoal) -> ImpactGoalRow:
        if await self.exists_for(goal.bond_id, goal.metric_type):
            raise ConflictError(
                f"Goal for {goal.metric_type} already exists for bond {goal.bond_id}"
            )
        row = ImpactGoalRow(
            goal_id=goal.goal_id,
            bond_id=goal.bond_id,
            project_id=goal.project_id,
            goal_name=goal.goal_name,
            description=goal.description,
            metric_type=goal.metric_type,
            target_value=goal.target_value,
            target_unit=goal.target_unit.value,
            target_date=goal.target_date,
            baseline_value=goal.baseline_value,
            baseline_date=goal.baseline_date,
            current_value=goal.current_value,
            progress_percentage=goal.progress_percentage,
            status=goal.status.value,
            kpis=goal.kpis,
            verification_method=goal.verification_method,
            reporting_frequency=goal.reporting_frequency,
            created_at=goal.created_at,
            updated_at=goal.updated_at,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Goal for {goal.metric_type} already exists for bond {goal.bond_id}"
            ) from exc
        await self._session.refresh(row)
        return row

    async def get(self, goal_id: UUID) -> ImpactGoalRow | None:
        return await self._session.get(ImpactGoalRow, goal_id)

    async def exists_for(self, bond_id: str, metric_type: str) -> bool:
        result = await self._session.execute(
            select(ImpactGoalRow.goal_id).where(
                ImpactGoalRow.bond_id == bond_id,
                ImpactGoalRow.metric_type == metric_type,
            )
        )
        return result.first() is not None

    async def get_by_bond_and_type(
        self, bond_id: str, metric_type: str,
    ) -> ImpactGoalRow | None:
        result = await self._session.execute(
            select(ImpactGoalRow).where(
                ImpactGoalRow.bond_id == bond_id,
                ImpactGoalRow.metric_type == metric_type,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_bond(
        self, bond_id: str, *, page: int = 0, size: int = 50,
    ) -> tuple[list[ImpactGoalRow], int]:
        stmt = (
            select(ImpactGoalRow)
            .where(ImpactGoalRow.bond_id == bond_id)
            .order_by(ImpactGoalRow.created_at.desc(), ImpactGoalRow.goal_id.desc())
        )
        return await paginate(self._session, stmt, page=page, size=size)

    async def list_by_bond_and_status(
        self, bond_id: str, status: str, *, page: int = 0, size: int = 50,
    ) -> tuple[list[ImpactGoalRow], int]:
        stmt = (
            select(ImpactGoalRow)
            .where(ImpactGoalRow.bond_id == bond_id, ImpactGoalRow.status == status)
            .order_by(ImpactGoalRow.created_at.desc(), ImpactGoalRow.goal_id.desc())
        )
        return await paginate(self._session, stmt, page=page, size=size)

    async def count_by_bond(self, bond_id: str, status: str | None = None) -> int:
        stmt = select(func.count()).where(ImpactGoalRow.bond_id == bond_id)
        if status is not None:
            stmt = stmt.where(ImpactGoalRow.status == status)
        total = await self._session.scalar(stmt)
        return int(total or 0)

    async def list_all_for_bond(self, bond_id: str) -> list[ImpactGoalRow]:
        result = await self._session.execute(
            select(ImpactGoalRow)
            .where(ImpactGoalRow.bond_id == bond_id)
            .order_by(ImpactGoalRow.target_date.asc())
        )
        return list(result.scalars().all())

    async def list_by_statuses(
        self, bond_id: str, statuses: Iterable[str],
    ) -> list[ImpactGoalRow]:
        result = await self._session.execute(
            select(ImpactGoalRow)
            .where(
                ImpactGoalRow.bond_id == bond_id,
                ImpactGoalRow.status.in_(list(statuses)),
            )
            .order_by(ImpactGoalRow.target_date.asc())
        )
        return list(result.scalars().all())

    async def list_due_before(
        self, bond_id: str, moment: datetime, excluded_statuses: Iterable[str],
    ) -> list[ImpactGoalRow]:
        """Goals whose target date is before ``moment``, nearest deadline first."""
        result = await self._session.execute(
            select(ImpactGoalRow)
            .where(
                ImpactGoalRow.bond_id == bond_id,
                ImpactGoalRow.target_date < moment,
                ImpactGoalRow.status.not_in(list(excluded_statuses)),
            )
            .order_by(ImpactGoalRow.target_date.asc())
        )
        return list(result.scalars().all())

    async def upcoming(
        self, bond_id: str, after: datetime, *, limit: int = 10,
    ) -> list[ImpactGoalRow]:
        result = await self._session.execute(
            select(ImpactGoalRow)
            .where(ImpactGoalRow.bond_id == bond_id, ImpactGoalRow.target_date >= after)
            .order_by(ImpactGoalRow.target_date.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_ids_for_evaluation(self, skip_statuses: Iterable[str]) -> list[UUID]:
        """Every goal id the daily batch should look at, oldest first."""
        result = await self._session.execute(
            select(ImpactGoalRow.goal_id)
            .where(ImpactGoalRow.status.not_in(list(skip_statuses)))
            .order_by(ImpactGoalRow.created_at.asc())
        )
        return list(result.scalars().all())

    async def save_progress(
        self,
        row: ImpactGoalRow,
        *,
        current_value: Decimal,
        progress_percentage: Decimal,
        status: str,
    ) -> ImpactGoalRow:
        """Write a new progress snapshot.

        The UPDATE is conditional on the version read with ``row``; a
        concurrent writer makes it a ConflictError.
        """
        row.current_value = current_value
        row.progress_percentage = progress_percentage
        row.status = status
        row.updated_at = utc_now()
        await self._flush_versioned(row)
        return row

    async def update(self, row: ImpactGoalRow, **changes: object) -> ImpactGoalRow:
        for key, value in changes.items():
            if not hasattr(ImpactGoalRow, key) or key in ("goal_id", "version"):
                raise ValueError(f"Not an updatable goal field: {key}")
            setattr(row, key, value)
        row.updated_at = utc_now()
        await self._flush_versioned(row)
        return row

    async def delete(self, goal_id: UUID) -> bool:
        result = await self._session.execute(
            delete(ImpactGoalRow).where(ImpactGoalRow.goal_id == goal_id)
        )
        await self._session.flush()
        return result.rowcount > 0

    async def _flush_versioned(self, row: ImpactGoalRow) -> None:
        try:
            await self._session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                f"Impact goal {row.goal_id} was modified concurrently"
            ) from exc
        except IntegrityError as exc:
            raise ConflictError(
                f"Goal for {row.metric_type} already exists for bond {row.bond_id}"
            ) from exc
        await self._session.refresh(row)
