"""FastAPI impact goal endpoints.

POST   /api/v1/impact/goals                                  - create goal
GET    /api/v1/impact/goals/{goal_id}                        - get goal
PUT    /api/v1/impact/goals/{goal_id}                        - update goal
DELETE /api/v1/impact/goals/{goal_id}                        - delete goal
POST   /api/v1/impact/goals/{goal_id}/evaluate               - evaluate now
PUT    /api/v1/impact/goals/{goal_id}/status                 - explicit status change
GET    /api/v1/impact/goals/bond/{bond_id}                   - page by bond (?status=)
GET    /api/v1/impact/goals/bond/{bond_id}/type/{type}       - goal for bond + type
GET    /api/v1/impact/goals/bond/{bond_id}/upcoming          - nearest deadlines
GET    /api/v1/impact/goals/bond/{bond_id}/active            - active goals
GET    /api/v1/impact/goals/bond/{bond_id}/overdue           - overdue goals
GET    /api/v1/impact/goals/bond/{bond_id}/by-type           - grouped by metric type
GET    /api/v1/impact/goals/bond/{bond_id}/dashboard         - goal health roll-up
GET    /api/v1/impact/goals/bond/{bond_id}/count             - goal count (?status=)
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from src.api.dependencies import get_correlation_id, get_goal_service
from src.models.common import GoalStatus, Page
from src.models.goal import GoalRequest, GoalsDashboard, ImpactGoal, StatusChangeRequest
from src.services.goals import GoalService

router = APIRouter(prefix="/api/v1/impact/goals", tags=["goals"])


class GoalCountResponse(BaseModel):
    bond_id: str
    status: GoalStatus | None = None
    count: int


@router.post("", status_code=201, response_model=ImpactGoal)
async def create_goal(
    body: GoalRequest,
    service: GoalService = Depends(get_goal_service),
    correlation_id: str = Depends(get_correlation_id),
) -> ImpactGoal:
    return await service.create_goal(body, correlation_id=correlation_id)


@router.get("/bond/{bond_id}", response_model=Page[ImpactGoal])
async def list_goals_by_bond(
    bond_id: str,
    status: GoalStatus | None = None,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=50, ge=1, le=500),
    service: GoalService = Depends(get_goal_service),
) -> Page[ImpactGoal]:
    if status is not None:
        return await service.list_by_bond_and_status(bond_id, status, page=page, size=size)
    return await service.list_by_bond(bond_id, page=page, size=size)


@router.get("/bond/{bond_id}/type/{metric_type}", response_model=list[ImpactGoal])
async def goals_by_bond_and_type(
    bond_id: str,
    metric_type: str,
    service: GoalService = Depends(get_goal_service),
) -> list[ImpactGoal]:
    return await service.get_by_bond_and_type(bond_id, metric_type)


@router.get("/bond/{bond_id}/upcoming", response_model=list[ImpactGoal])
async def upcoming_goals(
    bond_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    service: GoalService = Depends(get_goal_service),
) -> list[ImpactGoal]:
    return await service.upcoming(bond_id, limit=limit)


@router.get("/bond/{bond_id}/active", response_model=list[ImpactGoal])
async def active_goals(
    bond_id: str,
    service: GoalService = Depends(get_goal_service),
) -> list[ImpactGoal]:
    return await service.active(bond_id)


@router.get("/bond/{bond_id}/overdue", response_model=list[ImpactGoal])
async def overdue_goals(
    bond_id: str,
    service: GoalService = Depends(get_goal_service),
) -> list[ImpactGoal]:
    return await service.overdue(bond_id)


@router.get("/bond/{bond_id}/by-type", response_model=dict[str, list[ImpactGoal]])
async def goals_grouped_by_type(
    bond_id: str,
    service: GoalService = Depends(get_goal_service),
) -> dict[str, list[ImpactGoal]]:
    return await service.grouped_by_metric_type(bond_id)


@router.get("/bond/{bond_id}/dashboard", response_model=GoalsDashboard)
async def goals_dashboard(
    bond_id: str,
    service: GoalService = Depends(get_goal_service),
) -> GoalsDashboard:
    return await service.dashboard(bond_id)


@router.get("/bond/{bond_id}/count", response_model=GoalCountResponse)
async def goal_count(
    bond_id: str,
    status: GoalStatus | None = None,
    service: GoalService = Depends(get_goal_service),
) -> GoalCountResponse:
    count = await service.count(bond_id, status)
    return GoalCountResponse(bond_id=bond_id, status=status, count=count)


@router.get("/{goal_id}", response_model=ImpactGoal)
async def get_goal(
    goal_id: UUID,
    service: GoalService = Depends(get_goal_service),
) -> ImpactGoal:
    return await service.get_goal(goal_id)


@router.put("/{goal_id}", response_model=ImpactGoal)
async def update_goal(
    goal_id: UUID,
    body: GoalRequest,
    service: GoalService = Depends(get_goal_service),
    correlation_id: str = Depends(get_correlation_id),
) -> ImpactGoal:
    return await service.update_goal(goal_id, body, correlation_id=correlation_id)


@router.post("/{goal_id}/evaluate", response_model=ImpactGoal)
async def evaluate_goal(
    goal_id: UUID,
    service: GoalService = Depends(get_goal_service),
    correlation_id: str = Depends(get_correlation_id),
) -> ImpactGoal:
    """Recompute progress and status for one goal now."""
    return await service.evaluate_goal(goal_id, correlation_id=correlation_id)


@router.put("/{goal_id}/status", response_model=ImpactGoal)
async def change_goal_status(
    goal_id: UUID,
    body: StatusChangeRequest,
    service: GoalService = Depends(get_goal_service),
    correlation_id: str = Depends(get_correlation_id),
) -> ImpactGoal:
    return await service.change_status(goal_id, body, correlation_id=correlation_id)


@router.delete("/{goal_id}", status_code=204)
async def delete_goal(
    goal_id: UUID,
    service: GoalService = Depends(get_goal_service),
    correlation_id: str = Depends(get_correlation_id),
) -> Response:
    await service.delete_goal(goal_id, correlation_id=correlation_id)
    return Response(status_code=204)
