"""Tests for GoalRepository: uniqueness, queries and versioned writes."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from uuid_extensions import uuid7

from src.errors import ConflictError
from src.models.common import GoalStatus, MetricUnit
from src.models.goal import ImpactGoal
from src.repositories.goals import GoalRepository

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
BOND = "GB-2026-001"


def _make_goal(
    metric_type: str = "CARBON_EMISSIONS_REDUCTION",
    *,
    bond_id: str = BOND,
    status: GoalStatus = GoalStatus.NOT_STARTED,
    target_date: datetime = T0 + timedelta(days=365),
    created_at: datetime = T0,
) -> ImpactGoal:
    return ImpactGoal(
        goal_id=uuid7(),
        bond_id=bond_id,
        project_id="SOLAR-FARM-7",
        goal_name=f"Reach {metric_type}",
        metric_type=metric_type,
        target_value=Decimal("1000"),
        target_unit=MetricUnit.TONS_CO2,
        target_date=target_date,
        baseline_value=Decimal("0"),
        baseline_date=T0,
        current_value=Decimal("0"),
        progress_percentage=Decimal("0"),
        status=status,
        kpis={"sdg": 13},
        created_at=created_at,
        updated_at=created_at,
        version=1,
    )


@pytest.fixture
def repo(db_session) -> GoalRepository:
    return GoalRepository(db_session)


class TestGoalRepository:

    @pytest.mark.anyio
    async def test_create_assigns_first_version(self, repo: GoalRepository) -> None:
        goal = _make_goal()
        row = await repo.create(goal)

        assert row.version == 1
        stored = ImpactGoal.from_row(await repo.get(goal.goal_id))
        assert stored.target_value == Decimal("1000")
        assert stored.kpis == {"sdg": 13}
        assert stored.target_date == goal.target_date

    @pytest.mark.anyio
    async def test_one_goal_per_bond_and_type(self, repo: GoalRepository) -> None:
        await repo.create(_make_goal())
        with pytest.raises(ConflictError):
            await repo.create(_make_goal())

        # Same type on another bond is fine.
        await repo.create(_make_goal(bond_id="GB-OTHER"))
        assert await repo.exists_for(BOND, "CARBON_EMISSIONS_REDUCTION") is True
        assert await repo.exists_for(BOND, "WATER_SAVED") is False

    @pytest.mark.anyio
    async def test_save_progress_bumps_version(self, repo: GoalRepository) -> None:
        row = await repo.create(_make_goal())

        await repo.save_progress(
            row,
            current_value=Decimal("550"),
            progress_percentage=Decimal("55.00"),
            status=GoalStatus.EXCEEDED.value,
        )

        assert row.version == 2
        assert row.current_value == Decimal("550")
        assert row.status == "EXCEEDED"

    @pytest.mark.anyio
    async def test_list_by_bond_and_status(self, repo: GoalRepository) -> None:
        await repo.create(_make_goal("CARBON_EMISSIONS_REDUCTION"))
        await repo.create(_make_goal("WATER_SAVED", status=GoalStatus.AT_RISK))
        await repo.create(_make_goal("ENERGY_SAVED", status=GoalStatus.AT_RISK))

        all_rows, total = await repo.list_by_bond(BOND, page=0, size=2)
        at_risk, at_risk_total = await repo.list_by_bond_and_status(BOND, "AT_RISK")

        assert total == 3
        assert len(all_rows) == 2
        assert at_risk_total == 2
        assert {r.metric_type for r in at_risk} == {"WATER_SAVED", "ENERGY_SAVED"}

    @pytest.mark.anyio
    async def test_upcoming_and_due_before(self, repo: GoalRepository) -> None:
        now = T0 + timedelta(days=100)
        await repo.create(_make_goal("WATER_SAVED", target_date=T0 + timedelta(days=50)))
        await repo.create(_make_goal("ENERGY_SAVED", target_date=T0 + timedelta(days=300)))
        await repo.create(_make_goal("LAND_RESTORED", target_date=T0 + timedelta(days=200)))
        await repo.create(_make_goal(
            "JOBS_CREATED", target_date=T0 + timedelta(days=60), status=GoalStatus.ACHIEVED,
        ))

        upcoming = await repo.upcoming(BOND, now, limit=5)
        overdue = await repo.list_due_before(BOND, now, ["ACHIEVED", "EXCEEDED", "CANCELLED"])

        assert [r.metric_type for r in upcoming] == ["LAND_RESTORED", "ENERGY_SAVED"]
        assert [r.metric_type for r in overdue] == ["WATER_SAVED"]

    @pytest.mark.anyio
    async def test_ids_for_evaluation_skip_cancelled(self, repo: GoalRepository) -> None:
        kept = await repo.create(_make_goal("WATER_SAVED"))
        await repo.create(_make_goal("ENERGY_SAVED", status=GoalStatus.CANCELLED))

        ids = await repo.list_ids_for_evaluation(["CANCELLED"])

        assert ids == [kept.goal_id]

    @pytest.mark.anyio
    async def test_update_rejects_unknown_fields(self, repo: GoalRepository) -> None:
        row = await repo.create(_make_goal())
        with pytest.raises(ValueError):
            await repo.update(row, nonsense=1)

    @pytest.mark.anyio
    async def test_delete(self, repo: GoalRepository) -> None:
        row = await repo.create(_make_goal())
        assert await repo.delete(row.goal_id) is True
        assert await repo.get(row.goal_id) is None
