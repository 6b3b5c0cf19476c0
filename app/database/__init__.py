import logging
from .mysql import init_mysql_db, close_mysql_db, check_mysql_connection, get_db, get_async_session

logger = logging.getLogger(__name__)


async def init_databases():
    """Initialize the relational store"""
    try:
        await init_mysql_db()
        logger.info("All databases initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def close_databases():
    """Close all database connections"""
    try:
        await close_mysql_db()
        logger.info("All database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")


async def check_database_health(bind=None):
    """Check health of database connections"""
    mysql_status = await check_mysql_connection(bind)

    return {
        "mysql": mysql_status,
        "overall": mysql_status
    }

__all__ = [
    "init_databases",
    "close_databases",
    "check_database_health",
    "get_db",
    "get_async_session"
]
