"""
Analytics Router

FastAPI endpoints for the dashboard: monthly series, KPIs, deltas, stock
alerts, KPI targets and cache control.
"""

import logging
from typing import Annotated, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from app.core.config import settings
from app.modules.analytics.dependencies import AnalyticsCacheDep, AnalyticsServiceDep
from app.modules.analytics.exceptions import InvalidWindowError
from app.modules.analytics.schemas import AnalyticsResult, CacheStatsResponse, StockAlerts
from app.modules.analytics.utils import (
    CSV_HEADERS,
    create_csv_response,
    prepare_kpis_csv,
    prepare_monthly_buckets_csv,
)
from app.modules.transactions.schemas import KpiTargetsUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])

MonthsQuery = Annotated[Optional[int], Query(
    ge=1,
    le=settings.ANALYTICS_MAX_WINDOW_MONTHS,
    description="Number of calendar months in the window (default from settings)"
)]


@router.get("/dashboard", response_model=AnalyticsResult)
async def get_dashboard(
    service: AnalyticsServiceDep,
    months: MonthsQuery = None,
    refresh: bool = Query(False, description="Bypass the cache and recompute"),
):
    """Monthly buckets, totals, KPIs and deltas for the dashboard."""
    try:
        return await service.compute_analytics(months=months, force_refresh=refresh)
    except InvalidWindowError as e:
        raise HTTPException(422, str(e))
    except Exception as e:
        logger.error(f"Error computing analytics for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error computing analytics: {str(e)}")


@router.get("/dashboard/monthly", response_model=None)
async def get_monthly_buckets(
    service: AnalyticsServiceDep,
    months: MonthsQuery = None,
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Export format: csv"),
):
    """Monthly sales/purchases/expenses series for charting."""
    try:
        result = await service.compute_analytics(months=months)
    except InvalidWindowError as e:
        raise HTTPException(422, str(e))
    except Exception as e:
        logger.error(f"Error computing monthly series for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error computing analytics: {str(e)}")

    if export == "csv":
        filename = f"monthly_summary_{result.buckets[0].month_key}_{result.buckets[-1].month_key}.csv"
        return create_csv_response(
            prepare_monthly_buckets_csv(result.buckets), filename, CSV_HEADERS["monthly_buckets"]
        )
    return result.buckets


@router.get("/kpis", response_model=None)
async def get_kpis(
    service: AnalyticsServiceDep,
    months: MonthsQuery = None,
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Export format: csv"),
):
    """KPI catalog with targets and below-target flags."""
    try:
        result = await service.compute_analytics(months=months)
    except InvalidWindowError as e:
        raise HTTPException(422, str(e))
    except Exception as e:
        logger.error(f"Error computing KPIs for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error computing analytics: {str(e)}")

    if export == "csv":
        filename = f"kpis_{result.generated_at.date()}.csv"
        return create_csv_response(prepare_kpis_csv(result.kpis), filename, CSV_HEADERS["kpis"])
    return result.kpis


@router.get("/stock-alerts", response_model=StockAlerts)
async def get_stock_alerts(service: AnalyticsServiceDep):
    """Products at or below minimum stock and pending order lines short of stock."""
    try:
        result = await service.compute_analytics()
    except Exception as e:
        logger.error(f"Error computing stock alerts for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error computing analytics: {str(e)}")
    return result.stock_alerts


@router.get("/kpi-targets", response_model=Dict[str, str])
async def get_kpi_targets(service: AnalyticsServiceDep):
    """Targets configured for this company, keyed by KPI."""
    try:
        targets = await service.get_kpi_targets()
    except Exception as e:
        logger.error(f"Error loading KPI targets for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error loading KPI targets: {str(e)}")
    return {name: str(value) for name, value in targets.items()}


@router.put("/kpi-targets", status_code=204)
async def save_kpi_targets(payload: KpiTargetsUpdate, service: AnalyticsServiceDep):
    """Save KPI targets; the next dashboard read recomputes."""
    try:
        await service.save_kpi_targets(payload.as_mapping())
    except Exception as e:
        logger.error(f"Error saving KPI targets for tenant {service.tenant_id}: {e}")
        raise HTTPException(500, f"Error saving KPI targets: {str(e)}")


@router.post("/invalidate")
async def invalidate_cache(
    service: AnalyticsServiceDep,
    tag: Optional[str] = Query(None, description="Changed table, e.g. 'expenses' (all when omitted)"),
):
    """Force the next dashboard read to recompute."""
    affected = service.invalidate(tag)
    return {"invalidated": affected}


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: AnalyticsCacheDep):
    return CacheStatsResponse(**cache.stats())
