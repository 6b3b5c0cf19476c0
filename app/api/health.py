from fastapi import APIRouter, HTTPException, Request

from app.core.config import settings
from app.database import check_database_health
from app.database.redis import check_redis_connection
from app.utils.time_utils import utc_now
from app.websockets.connection_manager import manager

router = APIRouter()


def _db_engine(request: Request):
    return getattr(request.app.state, "db_engine", None)


@router.get("/health")
async def health_check(request: Request):
    """Application health check endpoint"""
    try:
        db_health = await check_database_health(_db_engine(request))

        overall_status = "healthy" if db_health["overall"] else "unhealthy"
        databases = {"mysql": "connected" if db_health["mysql"] else "disconnected"}

        # Redis 장애는 전체 상태에 반영하지 않음 (Rate Limiting fail-open)
        if settings.rate_limit_enabled:
            databases["redis"] = "connected" if await check_redis_connection() else "disconnected"

        return {
            "status": overall_status,
            "timestamp": utc_now(),
            "databases": databases,
            "connections": manager.get_connection_count(),
            "service": "pin-chat-backend"
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Health check failed: {str(e)}"
        )


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes readiness probe endpoint"""
    db_health = await check_database_health(_db_engine(request))

    if not db_health["overall"]:
        raise HTTPException(
            status_code=503,
            detail="Service not ready - database connection failed"
        )

    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive", "timestamp": utc_now()}
