import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, status

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# writer 태스크에게 소켓을 닫으라고 알리는 표식
_CLOSE = object()


@dataclass(frozen=True)
class ConnectionBinding:
    """연결 하나가 바인딩된 참여자/방"""
    connection_id: str
    session_token: str
    participant_id: int
    room_id: str
    nickname: str


class _Connection:
    def __init__(self, connection_id: str, websocket: WebSocket, outbox_size: int):
        self.connection_id = connection_id
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.writer_task: Optional[asyncio.Task] = None
        self.binding: Optional[ConnectionBinding] = None
        self.dropped = False


class ConnectionManager:
    """
    Live Connection Binding 테이블

    바인딩 변경은 모두 이 클래스의 메서드를 거친다. 전송은 연결별 outbox 큐에
    넣기만 하고 실제 소켓 쓰기는 연결별 writer 태스크가 순서대로 처리한다.
    따라서 락을 잡은 채로 네트워크 I/O를 기다리는 일이 없다.
    """

    def __init__(self, outbox_size: Optional[int] = None):
        self.outbox_size = outbox_size or settings.ws_outbox_size
        # 연결별 상태: {connection_id: _Connection}
        self._connections: Dict[str, _Connection] = {}
        # 채팅방별 연결 그룹: {room_id: {connection_id}}
        self._rooms: Dict[str, Set[str]] = {}
        # 참여자별 연결: {participant_id: connection_id}
        self._participants: Dict[int, str] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # 연결 등록 / 해제
    # =========================================================================

    async def register(self, websocket: WebSocket) -> str:
        """수락된 WebSocket을 등록하고 connection_id를 반환합니다."""
        connection_id = uuid.uuid4().hex
        conn = _Connection(connection_id, websocket, self.outbox_size)
        async with self._lock:
            self._connections[connection_id] = conn
        conn.writer_task = asyncio.create_task(self._writer(conn))
        logger.info(f"Connection {connection_id} registered")
        return connection_id

    async def unregister(self, connection_id: str) -> Optional[ConnectionBinding]:
        """연결을 제거합니다. 남아 있던 바인딩을 반환합니다."""
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return None
            binding = self._remove_binding(conn)

        if conn.writer_task is not None and not conn.writer_task.done():
            conn.writer_task.cancel()
            try:
                await conn.writer_task
            except asyncio.CancelledError:
                pass
        self._drain(conn)

        logger.info(f"Connection {connection_id} unregistered")
        return binding

    # =========================================================================
    # 바인딩
    # =========================================================================

    async def bind(self, connection_id: str, binding: ConnectionBinding) -> bool:
        """연결에 참여자/방을 바인딩합니다. 기존 바인딩은 대체됩니다."""
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None or conn.dropped:
                return False

            self._remove_binding(conn)

            # 같은 참여자가 다른 연결에 붙어 있었다면 그 연결은 바인딩을 잃는다
            previous = self._participants.get(binding.participant_id)
            if previous is not None and previous in self._connections:
                self._remove_binding(self._connections[previous])

            conn.binding = binding
            self._rooms.setdefault(binding.room_id, set()).add(connection_id)
            self._participants[binding.participant_id] = connection_id

        logger.info(
            f"Connection {connection_id} bound to participant {binding.participant_id} in room {binding.room_id}"
        )
        return True

    async def unbind(self, connection_id: str) -> Optional[ConnectionBinding]:
        """연결의 바인딩을 해제하고 해제된 바인딩을 반환합니다."""
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                return None
            return self._remove_binding(conn)

    async def unbind_participant(self, participant_id: int) -> Optional[ConnectionBinding]:
        """참여자 ID 기준 바인딩 해제"""
        async with self._lock:
            connection_id = self._participants.get(participant_id)
            if connection_id is None or connection_id not in self._connections:
                return None
            return self._remove_binding(self._connections[connection_id])

    def _remove_binding(self, conn: _Connection) -> Optional[ConnectionBinding]:
        binding = conn.binding
        if binding is None:
            return None

        conn.binding = None
        members = self._rooms.get(binding.room_id)
        if members is not None:
            members.discard(conn.connection_id)
            # 채팅방에 연결이 없으면 방 자체를 제거
            if not members:
                del self._rooms[binding.room_id]
        if self._participants.get(binding.participant_id) == conn.connection_id:
            del self._participants[binding.participant_id]
        return binding

    # =========================================================================
    # 조회 (읽기 전용 접근자)
    # =========================================================================

    def get_binding(self, connection_id: str) -> Optional[ConnectionBinding]:
        conn = self._connections.get(connection_id)
        return conn.binding if conn is not None else None

    def find_by_participant(self, participant_id: int) -> Optional[str]:
        """참여자가 바인딩된 connection_id"""
        return self._participants.get(participant_id)

    def bindings_for_room(self, room_id: str) -> List[ConnectionBinding]:
        """방에 바인딩된 연결 목록 (fan-out 대상)"""
        bindings = []
        for connection_id in self._rooms.get(room_id, ()):
            conn = self._connections.get(connection_id)
            if conn is not None and conn.binding is not None:
                bindings.append(conn.binding)
        return bindings

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_room_connection_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def get_stats(self) -> Dict[str, Any]:
        """연결 통계"""
        return {
            "connections": len(self._connections),
            "bound_participants": len(self._participants),
            "active_rooms": len(self._rooms),
        }

    # =========================================================================
    # 전송
    # =========================================================================

    def enqueue(self, connection_id: str, payload: Dict[str, Any]) -> bool:
        """
        연결의 outbox에 이벤트를 넣습니다 (I/O 대기 없음).

        큐가 가득 찬 느린 연결은 끊어집니다.
        """
        conn = self._connections.get(connection_id)
        if conn is None or conn.dropped:
            return False

        try:
            conn.outbox.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Outbox full, dropping slow connection {connection_id}",
                extra={"connection_id": connection_id}
            )
            self._drop(conn)
            return False

    async def broadcast_to_room(
        self,
        room_id: str,
        payload: Dict[str, Any],
        exclude: Optional[str] = None
    ) -> int:
        """방에 바인딩된 모든 연결에 이벤트를 넣고 대상 수를 반환합니다."""
        delivered = 0
        async with self._lock:
            for connection_id in list(self._rooms.get(room_id, ())):
                if connection_id == exclude:
                    continue
                if self.enqueue(connection_id, payload):
                    delivered += 1
        return delivered

    async def wait_idle(self):
        """모든 outbox가 비워질 때까지 대기"""
        await asyncio.gather(*(conn.outbox.join() for conn in list(self._connections.values())))

    async def close_all(self):
        """서버 종료 시 모든 연결 정리"""
        for connection_id in list(self._connections.keys()):
            conn = self._connections.get(connection_id)
            if conn is not None:
                try:
                    await conn.websocket.close(code=status.WS_1001_GOING_AWAY)
                except Exception as e:
                    logger.debug(f"Error closing connection {connection_id}: {e}")
            await self.unregister(connection_id)

    # =========================================================================
    # writer
    # =========================================================================

    def _drop(self, conn: _Connection):
        conn.dropped = True
        self._drain(conn)
        conn.outbox.put_nowait(_CLOSE)

    @staticmethod
    def _drain(conn: _Connection):
        while True:
            try:
                conn.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            conn.outbox.task_done()

    async def _writer(self, conn: _Connection):
        """연결별 순차 전송 루프"""
        while True:
            payload = await conn.outbox.get()
            try:
                if payload is _CLOSE:
                    await conn.websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
                    return
                await conn.websocket.send_json(payload)
            except Exception as e:
                logger.warning(f"Failed to send to connection {conn.connection_id}: {e}")
                conn.dropped = True
                self._drain(conn)
                return
            finally:
                conn.outbox.task_done()


# 전역 연결 매니저 인스턴스
manager = ConnectionManager()
