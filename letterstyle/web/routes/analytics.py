"""De-identified style analytics."""

from fastapi import APIRouter, Depends, Query

from letterstyle.web.deps import get_aggregator

router = APIRouter(prefix="/api/style/analytics")


@router.get("/summary")
def analytics_summary(aggregator=Depends(get_aggregator)):
    return aggregator.get_analytics_summary()


@router.post("/run")
def run_aggregation(aggregator=Depends(get_aggregator)):
    """Aggregate the past week for every known subspecialty."""
    return aggregator.run_weekly_aggregation()


@router.get("/{subspecialty}")
def subspecialty_analytics(
    subspecialty: str,
    limit: int = Query(10, ge=1, le=100),
    aggregator=Depends(get_aggregator),
):
    return {"subspecialty": subspecialty, "aggregates": aggregator.get_style_analytics(subspecialty, limit)}
