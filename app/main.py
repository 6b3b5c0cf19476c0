"""
PIN Chat Backend - FastAPI Application

PIN으로 보호되는 채팅방 관리, 익명 참여자 입장/퇴장, 실시간 메시지 브로드캐스트를 담당합니다.
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import include_routers
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.database import init_databases, close_databases
from app.database.mysql import AsyncSessionLocal, engine
from app.database.redis import init_redis, close_redis
from app.infrastructure.kafka import get_event_producer
from app.middleware.error_handler import (
    ErrorHandlerMiddleware,
    create_http_exception_handler,
    create_validation_exception_handler
)
from app.middleware.logging_middleware import LoggingMiddleware
from app.middleware.rate_limiting import RateLimitMiddleware
from app.services.maintenance import get_maintenance_worker
from app.websockets.connection_manager import manager

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} starting up...")

    await init_databases()
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)

    # Redis는 Rate Limiting에만 사용
    if settings.rate_limit_enabled:
        await init_redis()

    producer = get_event_producer()
    if settings.kafka_enabled:
        await producer.start()

    worker = get_maintenance_worker()
    if settings.maintenance_enabled:
        await worker.start()

    yield

    # Shutdown
    logger.info(f"{settings.app_name} shutting down...")

    await worker.stop()
    await manager.close_all()
    await producer.stop()
    await close_redis()
    await close_databases()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan
)
app.state.session_factory = AsyncSessionLocal
app.state.db_engine = engine

# Middleware (마지막에 추가한 것이 가장 바깥)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
app.add_exception_handler(StarletteHTTPException, create_http_exception_handler())
app.add_exception_handler(RequestValidationError, create_validation_exception_handler())

# Include routers
include_routers(app, "api", [str(Path(__file__).parent / "api")])

# Uploaded files
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    return {
        "service": settings.app_name,
        "version": settings.version,
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
