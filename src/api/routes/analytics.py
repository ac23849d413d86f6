"""Turn analytics endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_services
from src.container import Services
from src.domains.analytics.models import (
    FairnessMetrics,
    FairnessSnapshot,
    GroupAnalytics,
    GroupInsights,
    PerformanceMetrics,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["analytics"])


@router.get("/groups/{group_id}/analytics")
def get_group_analytics(
    group_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> GroupAnalytics:
    """Percentiles, fairness, weekly activity, membership trends and peak times."""
    return services.analytics.get_group_analytics(group_id, start_date, end_date)


@router.get("/groups/{group_id}/fairness")
def get_group_fairness(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    metrics: FairnessMetrics = services.analytics.get_group_fairness(group_id)
    return {
        **metrics.model_dump(mode="json"),
        "fairness_level": metrics.fairness_level(),
        "is_balanced": metrics.is_balanced(),
    }


@router.get("/groups/{group_id}/fairness/trend")
def get_fairness_trend(
    group_id: str,
    weeks: int = Query(default=8, ge=1, le=52),
    services: Services = Depends(get_services),  # noqa: B008
) -> list[FairnessSnapshot]:
    return services.analytics.fairness.get_fairness_trend(group_id, weeks)


@router.get("/groups/{group_id}/insights")
def get_group_insights(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> GroupInsights:
    return services.analytics.get_group_insights(group_id)


@router.get("/groups/{group_id}/performance")
def get_performance_metrics(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> PerformanceMetrics:
    return services.analytics.get_performance_metrics(group_id)


@router.get("/groups/{group_id}/percentiles")
def get_duration_percentiles(
    group_id: str,
    percentiles: list[float] = Query(default=[50, 95, 99]),  # noqa: B008
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    if any(p < 0 or p > 100 for p in percentiles):
        raise ValueError("Percentiles must be between 0 and 100")
    services.repository.get_group(group_id)
    requested = [int(p) if float(p).is_integer() else p for p in percentiles]
    values = services.analytics.calculate_duration_percentiles(
        group_id, requested, start_date, end_date
    )
    return {
        "group_id": group_id,
        "percentiles": {str(p): v for p, v in values.items()},
        "start_date": start_date,
        "end_date": end_date,
    }


@router.get("/users/{user_id}/trends")
def get_user_trends(
    user_id: str,
    days: int = Query(default=30, ge=1, le=365),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    trends = services.analytics.get_user_trends(user_id, days)
    return {**trends.model_dump(mode="json"), "turns_trend": trends.turns_trend()}


@router.delete("/groups/{group_id}/analytics/cache")
def clear_group_cache(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    removed = services.analytics.clear_cache(group_id)
    return {"group_id": group_id, "cleared": removed}


@router.delete("/users/{user_id}/analytics/cache")
def clear_user_cache(
    user_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    removed = services.analytics.clear_user_cache(user_id)
    return {"user_id": user_id, "cleared": removed}
