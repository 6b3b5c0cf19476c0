from typing import Callable

from fastapi import Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, DatabaseError

from app.core.errors import (
    BaseCustomException,
    ValidationError,
    create_error_response,
    create_validation_error_response,
    internal_error_payload
)
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    통합 에러 처리 미들웨어

    라우터 밖으로 새어 나온 예외를 표준화된 에러 응답으로 변환합니다.
    저장소 오류는 503, 알 수 없는 오류는 내용을 숨긴 500으로 응답하고 전체 내용을 로그에 남깁니다.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except BaseCustomException as e:
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict()
            )

        except IntegrityError as e:
            # 동시 요청이 제약 조건에서 충돌한 경우
            logger.warning(
                f"Integrity error on {request.method} {request.url.path}: {e.orig if hasattr(e, 'orig') else e}"
            )
            error_response = create_error_response(
                "conflict",
                "Resource state changed concurrently",
                status.HTTP_409_CONFLICT,
                {"constraint": "unique"}
            )
            return JSONResponse(
                status_code=error_response.status_code,
                content=error_response.model_dump()
            )

        except (OperationalError, DatabaseError) as e:
            error_detail = str(e.orig) if hasattr(e, 'orig') else str(e)
            logger.error(
                f"Database error: {type(e).__name__}: {error_detail}",
                extra={"path": request.url.path, "method": request.method},
                exc_info=True
            )

            error_response = create_error_response(
                "database_error",
                "Database connection or operation failed",
                status.HTTP_503_SERVICE_UNAVAILABLE,
                {"detail": error_detail if settings.debug else None}
            )
            return JSONResponse(
                status_code=error_response.status_code,
                content=error_response.model_dump()
            )

        except Exception as e:
            logger.exception(
                f"Unhandled exception: {type(e).__name__}",
                extra={"path": request.url.path, "method": request.method}
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=internal_error_payload()
            )


def create_http_exception_handler():
    """FastAPI HTTPException 핸들러 생성"""
    async def http_exception_handler(request: Request, exc):
        """HTTPException을 표준 형식으로 변환"""

        # 우리의 커스텀 예외인 경우 그대로 반환
        if isinstance(exc, BaseCustomException):
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_dict(),
                headers=getattr(exc, "headers", None)
            )

        # 일반 HTTPException인 경우 표준 형식으로 변환
        error_response = create_error_response(
            "http_error",
            exc.detail if isinstance(exc.detail, str) else "HTTP error occurred",
            exc.status_code,
            {"detail": exc.detail} if not isinstance(exc.detail, str) else None
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=error_response.model_dump(),
            headers=getattr(exc, "headers", None)
        )

    return http_exception_handler


def create_validation_exception_handler():
    """요청 검증 에러(RequestValidationError) 핸들러 생성"""
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        validation_errors = []

        for error in exc.errors():
            field_name = ".".join(str(loc) for loc in error["loc"] if loc != "body")
            validation_errors.append(
                ValidationError(
                    field=field_name or "body",
                    message=error["msg"],
                    value=jsonable_encoder(error.get("input"))
                )
            )

        error_response = create_validation_error_response(
            "Request validation failed",
            validation_errors
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=jsonable_encoder(error_response.model_dump())
        )

    return validation_exception_handler
