"""
구조화된 로깅 시스템

모든 로그는 JSON 한 줄로 기록되며, HTTP 요청 ID와 WebSocket 연결 ID가
컨텍스트 변수로 자동 첨부됩니다. 개발 모드(debug)에서는 콘솔만 사람이 읽기 쉬운 형식을 씁니다.
"""

import json
import logging
import sys
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.utils.time_utils import isoformat, utc_now

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
connection_id_var: ContextVar[Optional[str]] = ContextVar('connection_id', default=None)

# LogRecord 기본 속성 (extra 필드 추출 시 제외)
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiokafka", "aiosqlite")


class StructuredFormatter(logging.Formatter):
    """JSON 로그 포매터"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": isoformat(utc_now()),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for key, var in (("request_id", request_id_var), ("connection_id", connection_id_var)):
            value = var.get()
            if value and key not in record.__dict__:
                log_data[key] = value

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info)
            }

        extra_data = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith('_')
        }
        if extra_data:
            log_data["extra"] = extra_data

        return json.dumps(log_data, ensure_ascii=False, default=str)


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter())
    return handler


def setup_logging():
    """
    로깅 시스템 초기화 (lifespan 시작 시 1회)

    - console: debug면 사람이 읽는 형식, 아니면 JSON
    - logs/app.log: INFO 이상
    - logs/error.log: ERROR 이상
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if settings.debug:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))
    else:
        console_handler.setFormatter(StructuredFormatter())

    root_logger.addHandler(console_handler)
    root_logger.addHandler(_file_handler(log_dir / "app.log", logging.INFO))
    root_logger.addHandler(_file_handler(log_dir / "error.log", logging.ERROR))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set(None)


def set_connection_context(connection_id: Optional[str]):
    """WebSocket 연결 ID를 현재 태스크의 로그 컨텍스트에 설정"""
    connection_id_var.set(connection_id)


# =============================================================================
# 도메인별 로그 헬퍼
# =============================================================================

def _log_event(logger: logging.Logger, level: int, message: str, event_type: str, **fields):
    logger.log(level, message, extra={"event_type": event_type, **fields})


def log_api_call(logger: logging.Logger, method: str, path: str, status_code: int, duration_ms: float, **extra):
    """HTTP 요청 1건 (LoggingMiddleware)"""
    level = logging.WARNING if status_code >= 500 else logging.INFO
    _log_event(
        logger, level, f"{method} {path} - {status_code}", "api_call",
        method=method, path=path, status_code=status_code, duration_ms=duration_ms, **extra
    )


def log_websocket_event(
    logger: logging.Logger,
    event: str,
    participant_id: Optional[int],
    room_id: Optional[str],
    **extra
):
    """입장/퇴장/attach 등 게이트웨이 이벤트"""
    _log_event(
        logger, logging.INFO, f"WebSocket {event}: participant {participant_id} room {room_id}", "websocket",
        event=event, participant_id=participant_id, room_id=room_id, **extra
    )


def log_room_event(logger: logging.Logger, event: str, room_id: str, **extra):
    """채팅방 생성/수정/비활성화/삭제"""
    _log_event(logger, logging.INFO, f"Room {room_id} {event}", "room", event=event, room_id=room_id, **extra)


def log_file_operation(
    logger: logging.Logger,
    operation: str,
    file_path: str,
    participant_id: int,
    file_size: Optional[int] = None,
    **extra
):
    _log_event(
        logger, logging.INFO, f"File {operation}: {file_path}", "file_operation",
        operation=operation, file_path=file_path, participant_id=participant_id, file_size=file_size, **extra
    )


def log_security_event(
    logger: logging.Logger,
    event: str,
    severity: str = "medium",
    ip_address: Optional[str] = None,
    **extra
):
    """요청 제한 초과 등 보안 관련 이벤트 (WARNING)"""
    _log_event(
        logger, logging.WARNING, f"Security event {event} ({severity})", "security",
        event=event, severity=severity, ip_address=ip_address, **extra
    )
