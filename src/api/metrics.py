"""FastAPI impact metric endpoints.

POST   /api/v1/impact/metrics                                     - ingest metric
GET    /api/v1/impact/metrics/{metric_id}                         - get metric
DELETE /api/v1/impact/metrics/{metric_id}                         - delete metric
GET    /api/v1/impact/metrics/bond/{bond_id}                      - page by bond
GET    /api/v1/impact/metrics/bond/{bond_id}/type/{metric_type}   - page by bond + type
GET    /api/v1/impact/metrics/bond/{bond_id}/type/{type}/range    - time-range scan
GET    /api/v1/impact/metrics/bond/{bond_id}/type/{type}/latest   - latest N
GET    /api/v1/impact/metrics/quality/{quality_status}            - page by quality
GET    /api/v1/impact/metrics/bond/{bond_id}/summary              - totals per type
GET    /api/v1/impact/metrics/bond/{bond_id}/stats                - counts
GET    /api/v1/impact/metrics/bond/{bond_id}/count                - metric count
POST   /api/v1/impact/metrics/aggregate                           - windowed aggregation
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from src.api.dependencies import get_correlation_id, get_metric_service
from src.models.aggregation import AggregationRequest, AggregationResult
from src.models.common import Page, QualityStatus, ensure_utc
from src.models.metric import BondMetricStats, ImpactMetric, MetricSubmission
from src.services.metrics import MetricService

router = APIRouter(prefix="/api/v1/impact/metrics", tags=["metrics"])


class SummaryResponse(BaseModel):
    bond_id: str
    totals: dict[str, str]


class CountResponse(BaseModel):
    bond_id: str
    metric_type: str | None = None
    count: int


@router.post("", status_code=201, response_model=ImpactMetric)
async def create_metric(
    body: MetricSubmission,
    service: MetricService = Depends(get_metric_service),
    correlation_id: str = Depends(get_correlation_id),
) -> ImpactMetric:
    """Validate, score and store one metric observation."""
    return await service.create_metric(body, correlation_id=correlation_id)


@router.post("/aggregate", response_model=AggregationResult)
async def aggregate_metrics(
    body: AggregationRequest,
    service: MetricService = Depends(get_metric_service),
    correlation_id: str = Depends(get_correlation_id),
) -> AggregationResult:
    return await service.aggregate(body, correlation_id=correlation_id)


@router.get("/quality/{quality_status}", response_model=Page[ImpactMetric])
async def list_metrics_by_quality(
    quality_status: QualityStatus,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=50, ge=1, le=500),
    service: MetricService = Depends(get_metric_service),
) -> Page[ImpactMetric]:
    return await service.list_by_quality_status(quality_status, page=page, size=size)


@router.get("/bond/{bond_id}", response_model=Page[ImpactMetric])
async def list_metrics_by_bond(
    bond_id: str,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=50, ge=1, le=500),
    service: MetricService = Depends(get_metric_service),
) -> Page[ImpactMetric]:
    return await service.list_by_bond(bond_id, page=page, size=size)


@router.get("/bond/{bond_id}/type/{metric_type}", response_model=Page[ImpactMetric])
async def list_metrics_by_bond_and_type(
    bond_id: str,
    metric_type: str,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=50, ge=1, le=500),
    service: MetricService = Depends(get_metric_service),
) -> Page[ImpactMetric]:
    return await service.list_by_bond_and_type(bond_id, metric_type, page=page, size=size)


@router.get("/bond/{bond_id}/type/{metric_type}/range", response_model=list[ImpactMetric])
async def find_metrics_in_range(
    bond_id: str,
    metric_type: str,
    start: datetime,
    end: datetime,
    service: MetricService = Depends(get_metric_service),
) -> list[ImpactMetric]:
    """Metrics with start <= timestamp < end, oldest first."""
    return await service.find_in_range(
        bond_id, metric_type, ensure_utc(start), ensure_utc(end),
    )


@router.get("/bond/{bond_id}/type/{metric_type}/latest", response_model=list[ImpactMetric])
async def latest_metrics(
    bond_id: str,
    metric_type: str,
    limit: int = Query(default=10, ge=1, le=500),
    service: MetricService = Depends(get_metric_service),
) -> list[ImpactMetric]:
    return await service.latest(bond_id, metric_type, limit=limit)


@router.get("/bond/{bond_id}/summary", response_model=SummaryResponse)
async def metric_summary(
    bond_id: str,
    service: MetricService = Depends(get_metric_service),
    correlation_id: str = Depends(get_correlation_id),
) -> SummaryResponse:
    """All-time total per metric type."""
    totals = await service.summary(bond_id, correlation_id=correlation_id)
    return SummaryResponse(
        bond_id=bond_id,
        totals={metric_type: str(total) for metric_type, total in totals.items()},
    )


@router.get("/bond/{bond_id}/stats", response_model=BondMetricStats)
async def metric_stats(
    bond_id: str,
    service: MetricService = Depends(get_metric_service),
) -> BondMetricStats:
    return await service.stats(bond_id)


@router.get("/bond/{bond_id}/count", response_model=CountResponse)
async def metric_count(
    bond_id: str,
    metric_type: str | None = None,
    service: MetricService = Depends(get_metric_service),
) -> CountResponse:
    count = await service.count(bond_id, metric_type)
    return CountResponse(bond_id=bond_id, metric_type=metric_type, count=count)


@router.get("/{metric_id}", response_model=ImpactMetric)
async def get_metric(
    metric_id: UUID,
    service: MetricService = Depends(get_metric_service),
) -> ImpactMetric:
    return await service.get_metric(metric_id)


@router.delete("/{metric_id}", status_code=204)
async def delete_metric(
    metric_id: UUID,
    service: MetricService = Depends(get_metric_service),
    correlation_id: str = Depends(get_correlation_id),
) -> Response:
    """Administrative delete; the time-series point is retracted best-effort."""
    await service.delete_metric(metric_id, correlation_id=correlation_id)
    return Response(status_code=204)
