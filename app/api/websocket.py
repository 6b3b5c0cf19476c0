import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends

from app.core.config import settings
from app.core.logging import get_logger, set_connection_context
from app.database.mysql import AsyncSessionLocal
from app.middleware.rate_limiting import get_client_ip
from app.utils.auth import get_current_admin
from app.websockets.connection_manager import manager
from app.websockets.handlers import message_handler, ClientInfo

logger = get_logger(__name__)

router = APIRouter(tags=["WebSocket"])


def _session_factory(websocket: WebSocket):
    return getattr(websocket.app.state, "session_factory", AsyncSessionLocal)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    채팅 WebSocket 연결 엔드포인트

    연결 후 join_room 또는 attach 이벤트로 방에 바인딩됩니다.
    close frame, 수신 오류, idle timeout 모두 leave_room과 같은 해제 경로를 탑니다.
    """
    await websocket.accept()
    connection_id = await manager.register(websocket)
    set_connection_context(connection_id)

    client = ClientInfo(
        origin=get_client_ip(websocket),
        user_agent=websocket.headers.get("user-agent")
    )
    session_factory = _session_factory(websocket)
    logger.info(f"WebSocket connected from {client.origin}", extra={"connection_id": connection_id})

    try:
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_json(),
                    timeout=settings.ws_idle_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.info(f"WebSocket idle timeout for connection {connection_id}")
                break
            except (json.JSONDecodeError, ValueError) as e:
                # JSON 파싱 오류는 연결을 유지한다
                logger.warning(f"Invalid JSON from connection {connection_id}: {e}")
                manager.enqueue(connection_id, {
                    "type": "error",
                    "error": "validation_error",
                    "message": "Frame is not valid JSON",
                    "details": None,
                    "status_code": 422
                })
                continue

            await message_handler.handle_event(connection_id, data, session_factory, client)

    except WebSocketDisconnect:
        # 정상적인 연결 해제
        logger.info(f"WebSocket disconnected: {connection_id}")

    except Exception as e:
        logger.warning(f"WebSocket receive error on {connection_id}: {e}")

    finally:
        await message_handler.disconnect(connection_id, session_factory)
        set_connection_context(None)


@router.get("/ws/stats")
async def get_connection_stats(admin_id: str = Depends(get_current_admin)):
    """현재 WebSocket 연결 통계 (관리자)"""
    return manager.get_stats()
