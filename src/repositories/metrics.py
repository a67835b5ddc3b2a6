"""Impact metric repository: insert-once records, receipt attached later."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ImpactMetricRow
from src.errors import ConflictError
from src.models.common import utc_now
from src.models.metric import ImpactMetric
from src.repositories.base import paginate


class MetricRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, metric: ImpactMetric) -> ImpactMetricRow:
        row = ImpactMetricRow(
            metric_id=metric.metric_id,
            bond_id=metric.bond_id,
            project_id=metric.project_id,
            metric_type=metric.metric_type,
            value=metric.value,
            unit=metric.unit.value,
            timestamp=metric.timestamp,
            source_type=metric.source_type.value,
            source_id=metric.source_id,
            device_id=metric.device_id,
            location=metric.location,
            metadata_json=metric.metadata,
            data_quality=metric.data_quality.model_dump(mode="json"),
            quality_status=metric.data_quality.quality_status.value,
            notarization_receipt=metric.notarization_receipt,
            notarized_at=metric.notarized_at,
            created_at=metric.created_at,
            updated_at=metric.updated_at,
        )
        if await self.get(metric.metric_id) is not None:
            raise ConflictError(f"Impact metric already exists: {metric.metric_id}")
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Impact metric already exists: {metric.metric_id}") from exc
        await self._session.refresh(row)
        return row

    async def get(self, metric_id: UUID) -> ImpactMetricRow | None:
        return await self._session.get(ImpactMetricRow, metric_id)

    async def list_by_bond(
        self, bond_id: str, *, page: int = 0, size: int = 50,
    ) -> tuple[list[ImpactMetricRow], int]:
        stmt = (
            select(ImpactMetricRow)
            .where(ImpactMetricRow.bond_id == bond_id)
            .order_by(ImpactMetricRow.timestamp.desc(), ImpactMetricRow.metric_id.desc())
        )
        return await paginate(self._session, stmt, page=page, size=size)

    async def list_by_bond_and_type(
        self, bond_id: str, metric_type: str, *, page: int = 0, size: int = 50,
    ) -> tuple[list[ImpactMetricRow], int]:
        stmt = (
            select(ImpactMetricRow)
            .where(
                ImpactMetricRow.bond_id == bond_id,
                ImpactMetricRow.metric_type == metric_type,
            )
            .order_by(ImpactMetricRow.timestamp.desc(), ImpactMetricRow.metric_id.desc())
        )
        return await paginate(self._session, stmt, page=page, size=size)

    async def list_by_quality_status(
        self, quality_status: str, *, page: int = 0, size: int = 50,
    ) -> tuple[list[ImpactMetricRow], int]:
        stmt = (
            select(ImpactMetricRow)
            .where(ImpactMetricRow.quality_status == quality_status)
            .order_by(ImpactMetricRow.timestamp.desc(), ImpactMetricRow.metric_id.desc())
        )
        return await paginate(self._session, stmt, page=page, size=size)

    async def find_in_range(
        self, bond_id: str, metric_type: str, start: datetime, end: datetime,
    ) -> list[ImpactMetricRow]:
        """Metrics with start <= timestamp < end, oldest first. Not paginated."""
        result = await self._session.execute(
            select(ImpactMetricRow)
            .where(
                ImpactMetricRow.bond_id == bond_id,
                ImpactMetricRow.metric_type == metric_type,
                ImpactMetricRow.timestamp >= start,
                ImpactMetricRow.timestamp < end,
            )
            .order_by(ImpactMetricRow.timestamp.asc(), ImpactMetricRow.metric_id.asc())
        )
        return list(result.scalars().all())

    async def latest(
        self, bond_id: str, metric_type: str, limit: int = 10,
    ) -> list[ImpactMetricRow]:
        result = await self._session.execute(
            select(ImpactMetricRow)
            .where(
                ImpactMetricRow.bond_id == bond_id,
                ImpactMetricRow.metric_type == metric_type,
            )
            .order_by(ImpactMetricRow.timestamp.desc(), ImpactMetricRow.metric_id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_bond(self, bond_id: str) -> int:
        total = await self._session.scalar(
            select(func.count()).where(ImpactMetricRow.bond_id == bond_id)
        )
        return int(total or 0)

    async def count_by_bond_and_type(self, bond_id: str, metric_type: str) -> int:
        total = await self._session.scalar(
            select(func.count()).where(
                ImpactMetricRow.bond_id == bond_id,
                ImpactMetricRow.metric_type == metric_type,
            )
        )
        return int(total or 0)

    async def count_metric_types(self, bond_id: str) -> int:
        total = await self._session.scalar(
            select(func.count(func.distinct(ImpactMetricRow.metric_type))).where(
                ImpactMetricRow.bond_id == bond_id
            )
        )
        return int(total or 0)

    async def attach_receipt(
        self, metric_id: UUID, receipt: str, notarized_at: datetime,
    ) -> ImpactMetricRow | None:
        """Store a notarization receipt. The only mutation a metric ever sees."""
        row = await self.get(metric_id)
        if row is not None:
            row.notarization_receipt = receipt
            row.notarized_at = notarized_at
            row.updated_at = utc_now()
            await self._session.flush()
        return row

    async def delete(self, metric_id: UUID) -> bool:
        result = await self._session.execute(
            delete(ImpactMetricRow).where(ImpactMetricRow.metric_id == metric_id)
        )
        await self._session.flush()
        return result.rowcount > 0
