from typing import Optional, Dict, Any, List
from fastapi import HTTPException, status
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """표준 에러 응답 모델"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    status_code: int


class ValidationError(BaseModel):
    """검증 에러 세부사항"""
    field: str
    message: str
    value: Optional[Any] = None


class ValidationErrorResponse(BaseModel):
    """검증 에러 응답 모델"""
    error: str = "validation_error"
    message: str
    validation_errors: List[ValidationError]
    status_code: int


# =============================================================================
# 커스텀 예외 클래스들
# =============================================================================

class BaseCustomException(HTTPException):
    """
    기본 커스텀 예외 클래스

    HTTP 라우터에서는 그대로 응답으로 변환되고,
    WebSocket 게이트웨이에서는 to_dict() 결과가 error 이벤트로 요청자에게만 전송됩니다.
    """
    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error = error
        self.message = message
        self.details = details
        self.status_code = status_code  # status_code를 먼저 설정
        super().__init__(status_code=status_code, detail=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """예외를 딕셔너리로 변환"""
        return {
            "error": self.error,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }

    def __str__(self) -> str:
        return f"{self.error}: {self.message}"


class ValidationException(BaseCustomException):
    """입력 검증 실패 예외"""
    def __init__(
        self,
        message: str = "Validation failed",
        validation_errors: Optional[List[ValidationError]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.validation_errors = validation_errors or []
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error="validation_error",
            message=message,
            details=details
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "validation_errors": [error.model_dump() for error in self.validation_errors],
            "status_code": self.status_code
        }


class AuthenticationException(BaseCustomException):
    """인증 실패 예외"""
    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="authentication_error",
            message=message,
            details=details
        )


class AuthorizationException(BaseCustomException):
    """권한 부족 예외 (소유권 검사 실패)"""
    def __init__(
        self,
        message: str = "Access denied",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="authorization_error",
            message=message,
            details=details
        )


class ResourceNotFoundException(BaseCustomException):
    """리소스를 찾을 수 없음 예외"""
    def __init__(
        self,
        resource: str = "Resource",
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if message is None:
            message = f"{resource} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="resource_not_found",
            message=message,
            details=details or {"resource": resource}
        )


class ConflictException(BaseCustomException):
    """리소스 충돌 예외"""
    def __init__(
        self,
        message: str = "Resource conflict",
        error: str = "resource_conflict",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error=error,
            message=message,
            details=details
        )


class NicknameTakenException(ConflictException):
    """같은 방에서 이미 사용 중인 닉네임"""
    def __init__(self, nickname: str):
        super().__init__(
            message="This nickname is already in use in the room",
            error="nickname_taken",
            details={"nickname": nickname}
        )


class DuplicateConnectionException(ConflictException):
    """같은 기기(origin)가 이미 방에 접속 중"""
    def __init__(self):
        super().__init__(
            message="You already have an active connection in this room",
            error="duplicate_connection"
        )


class RoomExpiredException(BaseCustomException):
    """만료된 채팅방"""
    def __init__(self, room_id: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_410_GONE,
            error="room_expired",
            message="The room has expired",
            details={"room_id": room_id} if room_id else None
        )


class RoomFullException(BaseCustomException):
    """정원이 가득 찬 채팅방"""
    def __init__(self, max_participants: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error="room_full",
            message="The room is full",
            details={"max_participants": max_participants}
        )


class NotInRoomException(BaseCustomException):
    """발신자가 해당 방에 바인딩되어 있지 않음"""
    def __init__(self, room_id: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="not_in_room",
            message="You are not in this room",
            details={"room_id": room_id} if room_id else None
        )


class FileTooLargeException(BaseCustomException):
    """방 정책보다 큰 파일"""
    def __init__(self, file_size: int, max_file_size: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            error="file_too_large",
            message=f"File too large. Maximum allowed: {format_file_size(max_file_size)}",
            details={"file_size": file_size, "max_file_size": max_file_size}
        )


class FileTypeNotAllowedException(BaseCustomException):
    """방 정책에서 허용하지 않는 파일 타입"""
    def __init__(self, mime_type: Optional[str], allowed_types: List[str], message: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            error="file_type_not_allowed",
            message=message or f"File type not allowed. Allowed: {', '.join(allowed_types)}",
            details={"mime_type": mime_type, "allowed_types": allowed_types}
        )


class PinExhaustedException(BaseCustomException):
    """고유 PIN 생성 실패"""
    def __init__(self, attempts: int):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="pin_exhausted",
            message="Could not generate a unique PIN",
            details={"attempts": attempts}
        )


class RateLimitException(BaseCustomException):
    """요청 제한 초과 예외"""
    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if retry_after:
            details = details or {}
            details["retry_after"] = retry_after

        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error="rate_limit_exceeded",
            message=message,
            details=details
        )


# =============================================================================
# 에러 헬퍼 함수들
# =============================================================================

def format_file_size(size: int) -> str:
    """바이트 수를 사람이 읽기 쉬운 단위로 변환"""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[index]}"


def create_error_response(
    error: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    """표준 에러 응답 생성"""
    return ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        details=details
    )


def create_validation_error_response(
    message: str,
    validation_errors: List[ValidationError],
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
) -> ValidationErrorResponse:
    """검증 에러 응답 생성"""
    return ValidationErrorResponse(
        message=message,
        validation_errors=validation_errors,
        status_code=status_code
    )


def internal_error_payload() -> Dict[str, Any]:
    """내부 오류를 외부에 노출할 때 사용하는 불투명한 페이로드"""
    return create_error_response(
        "internal_error",
        "An unexpected error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR
    ).model_dump()


# =============================================================================
# 자주 사용되는 에러 팩토리 함수들
# =============================================================================

def room_not_found_error(pin: Optional[str] = None, room_id: Optional[str] = None):
    """채팅방을 찾을 수 없음 에러"""
    details = {}
    if pin:
        details["pin"] = pin
    if room_id:
        details["room_id"] = room_id
    return ResourceNotFoundException("Room", details=details or None)


def invalid_session_error():
    """잘못된 세션 토큰 에러"""
    return AuthenticationException("Invalid or expired session")


def invalid_token_error():
    """잘못된 토큰 에러"""
    return AuthenticationException("Invalid or expired token")
