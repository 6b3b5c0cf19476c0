from typing import AsyncGenerator
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from app.core.config import settings

# Base class for SQLAlchemy models
Base = declarative_base()

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """드라이버별 엔진 옵션"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Validate connections before use
    }


def build_engine(database_url: str) -> AsyncEngine:
    """비동기 엔진 생성"""
    return create_async_engine(
        database_url,
        echo=settings.debug,  # Log SQL queries in debug mode
        **_engine_options(database_url)
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """세션 팩토리 생성"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


# Database engine with connection pooling
engine = build_engine(settings.database_url)

# Async session factory
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()


# Alias for consistency with naming convention
get_async_session = get_db


async def init_mysql_db():
    """Initialize MySQL database"""
    try:
        # Import models to register with Base.metadata
        import app.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("MySQL database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize MySQL database: {e}")
        raise


async def check_mysql_connection(bind=None):
    """Check MySQL database connection"""
    try:
        async with (bind or engine).connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.fetchone() is not None
    except Exception as e:
        logger.error(f"MySQL connection check failed: {e}")
        return False


async def close_mysql_db():
    """Close MySQL database connections"""
    await engine.dispose()
    logger.info("MySQL database connections closed")
