"""Shared helpers for the persistence layer.

Repositories call add()/flush()/refresh() only - never commit().
The session dependency handles commit/rollback (Unit-of-Work).
"""

from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

MAX_PAGE_SIZE = 500


async def paginate(
    session: AsyncSession, stmt: Select[Any], *, page: int, size: int,
) -> tuple[list[Any], int]:
    """Run ``stmt`` for one page (0-based) and return (rows, total).

    ``stmt`` must already carry its ORDER BY; the total ignores it.
    """
    page = max(page, 0)
    size = min(max(size, 1), MAX_PAGE_SIZE)
    total = await session.scalar(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    )
    result = await session.execute(stmt.offset(page * size).limit(size))
    return list(result.scalars().all()), int(total or 0)
