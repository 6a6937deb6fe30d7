"""Metrics router — dashboard numbers and pipeline log."""

from fastapi import APIRouter, Query

from onboarding_control.services.stats import dashboard_metrics

router = APIRouter(prefix="/api/metrics", tags=["Metrics"])


@router.get("/dashboard")
async def dashboard(log_limit: int = Query(20, ge=1, le=100)):
    return dashboard_metrics(log_limit=log_limit)
