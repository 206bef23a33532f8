"""
FastAPI dependencies for the analytics module
"""
from typing import Annotated

from fastapi import Depends, Request

from app.database.database import AsyncSessionLocal
from app.dependencies.companyDependencies import TenantId
from app.modules.analytics.cache import StalenessCache
from app.modules.analytics.service import AnalyticsService
from app.modules.transactions.repository import SQLAlchemyTransactionRepository


def get_analytics_cache(request: Request) -> StalenessCache:
    """The process-wide cache created at application startup"""
    return request.app.state.analytics_cache


def get_analytics_service(
    tenant_id: TenantId,
    cache: StalenessCache = Depends(get_analytics_cache)
) -> AnalyticsService:
    repository = SQLAlchemyTransactionRepository(AsyncSessionLocal, tenant_id)
    return AnalyticsService(repository=repository, tenant_id=tenant_id, cache=cache)


AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
AnalyticsCacheDep = Annotated[StalenessCache, Depends(get_analytics_cache)]
