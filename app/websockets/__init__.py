"""
WebSocket 실시간 채팅 모듈

주요 구성 요소:
- connection_manager: 연결 바인딩 테이블과 연결별 전송 큐
- broadcast: 방 단위 메시지 fan-out
- handlers: 이벤트 처리 핸들러 (Connection Gateway)
"""

from .connection_manager import manager, ConnectionManager, ConnectionBinding
from .broadcast import BroadcastEngine
from .handlers import (
    message_handler,
    coordinator,
    broadcast_engine,
    WebSocketMessageHandler,
    ClientInfo
)

__all__ = [
    "manager",
    "ConnectionManager",
    "ConnectionBinding",
    "BroadcastEngine",
    "message_handler",
    "coordinator",
    "broadcast_engine",
    "WebSocketMessageHandler",
    "ClientInfo"
]
