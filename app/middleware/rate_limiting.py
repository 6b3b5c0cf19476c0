"""
Rate Limiting 미들웨어

Redis 고정 윈도우 카운터를 사용한 요청 제한.
PIN 추측을 늦추기 위해 입장 시도(HTTP/WebSocket)에는 origin별로 더 엄격한 제한을 둔다.
"""

import json
import time
from typing import Callable

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection

from app.core.config import settings
from app.core.errors import RateLimitException
from app.core.logging import get_logger, log_security_event
from app.database.redis import check_rate_limit

logger = get_logger(__name__)


def get_client_ip(connection: HTTPConnection) -> str:
    """클라이언트 IP 추출 (Request / WebSocket 공용)"""
    forwarded_for = connection.headers.get("x-forwarded-for")
    if forwarded_for:
        # 첫 번째 IP가 실제 클라이언트 IP
        return forwarded_for.split(",")[0].strip()

    real_ip = connection.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return getattr(connection.client, "host", None) or "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate Limiting 미들웨어

    IP 주소 기반으로 요청 제한을 적용합니다.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = None,
        enabled: bool = None
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute or settings.rate_limit_requests_per_minute
        self.enabled = enabled if enabled is not None else settings.rate_limit_enabled

        # 예외 경로 (Rate Limiting 적용 안함)
        self.excluded_paths = {
            "/health",
            "/health/live",
            "/health/ready",
            "/metrics",
            "/docs",
            "/redoc",
            "/openapi.json"
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in self.excluded_paths:
            return await call_next(request)

        client_ip = get_client_ip(request)
        identifier = f"rate_limit:{client_ip}"

        try:
            allowed, current_count, reset_time = await check_rate_limit(
                identifier=identifier,
                limit=self.requests_per_minute,
                window=60
            )
        except Exception as e:
            logger.error(f"Rate limiting error for {identifier}: {e}")
            # 에러 시 요청 허용 (fail-open)
            return await call_next(request)

        if not allowed:
            log_security_event(
                logger,
                "rate_limit_exceeded",
                severity="medium",
                ip_address=client_ip,
                request_count=current_count,
                limit=self.requests_per_minute,
                path=request.url.path,
                method=request.method
            )
            exc = RateLimitException("Too many requests", retry_after=reset_time)
            response = Response(
                content=json.dumps(exc.to_dict()),
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                media_type="application/json"
            )
            self._add_rate_limit_headers(response, current_count, reset_time)
            return response

        response = await call_next(request)
        self._add_rate_limit_headers(response, current_count, reset_time)
        return response

    def _add_rate_limit_headers(self, response: Response, current_count: int, reset_time: int):
        """Rate Limit 헤더 추가"""
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_minute - current_count))
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + reset_time)


async def check_join_rate_limit(origin: str) -> None:
    """
    입장 시도 제한 (origin별)

    Raises:
        RateLimitException: 제한 초과
    """
    if not settings.rate_limit_enabled:
        return

    identifier = f"join_attempts:{origin}"
    try:
        allowed, current_count, reset_time = await check_rate_limit(
            identifier=identifier,
            limit=settings.join_attempts_per_minute,
            window=60
        )
    except Exception as e:
        logger.error(f"Join rate limiting error for {origin}: {e}")
        return

    if not allowed:
        log_security_event(
            logger,
            "join_rate_limit_exceeded",
            severity="high",
            ip_address=origin,
            request_count=current_count,
            limit=settings.join_attempts_per_minute
        )
        raise RateLimitException("Too many join attempts", retry_after=reset_time)
