from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import middleware
from app.common.middleware import TenantMiddleware, SecurityHeadersMiddleware

# Import routers
from app.modules.analytics.router import router as analytics_router

# Analytics cache and change notifications
from app.modules.analytics.cache import StalenessCache
from app.modules.analytics.events import change_notifier, register_session_listeners
from app.modules.analytics.service import subscribe_cache

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Stock Analytics API",
    description="Multi-tenant inventory analytics: monthly series, KPIs and period deltas",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide analytics cache, invalidated by committed changes on watched tables
app.state.analytics_cache = StalenessCache(ttl_seconds=settings.ANALYTICS_CACHE_TTL_SECONDS)
register_session_listeners(change_notifier)
subscribe_cache(app.state.analytics_cache, change_notifier)

# Include routers
app.include_router(analytics_router, prefix="/api/v1")

@app.get("/")
async def read_root():
    return {
        "message": "Stock Analytics API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "analytics_cache": app.state.analytics_cache.stats()
    }

@app.on_event("startup")
async def startup_event():
    logger.info("Stock Analytics API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(
        f"Analytics cache TTL: {settings.ANALYTICS_CACHE_TTL_SECONDS}s, "
        f"default window: {settings.ANALYTICS_WINDOW_MONTHS} months"
    )

    # Create database tables (only for development - use migrations in production)
    if settings.ENVIRONMENT == "development":
        try:
            from app.database.database import sync_engine, Base
            import app.modules.transactions.models  # noqa: F401  register models
            Base.metadata.create_all(bind=sync_engine)
        except Exception as e:
            logger.warning(f"Schema creation skipped or failed: {e}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Stock Analytics API shutting down...")
