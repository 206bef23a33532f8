from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from app.core.config import settings

# Synchronous engine for migrations and initial setup
sync_engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    echo=settings.DEBUG
)

# Async engine for application use
_async_engine_options = {"pool_pre_ping": True, "echo": settings.DEBUG}
if settings.ENVIRONMENT == "test":
    _async_engine_options["poolclass"] = NullPool
else:
    _async_engine_options.update(pool_size=10, max_overflow=20)

async_engine = create_async_engine(settings.async_database_url, **_async_engine_options)

# Sync session for migrations
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

# Async session for application
AsyncSessionLocal = sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)

Base = declarative_base()

