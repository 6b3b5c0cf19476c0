from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    BaseCustomException,
    NotInRoomException,
    internal_error_payload,
    invalid_session_error,
)
from app.core.logging import get_logger, log_websocket_event
from app.domain.events.room_events import ParticipantLeft
from app.middleware.rate_limiting import check_join_rate_limit
from app.schemas.events import (
    AttachEvent,
    DeleteMessageEvent,
    JoinRoomEvent,
    LeaveRoomEvent,
    PingEvent,
    SendMessageEvent,
    TypingEvent,
    error_event,
    left_room_event,
    parse_inbound_event,
    pong_event,
    room_closed_event,
    room_joined_event,
    user_joined_event,
    user_left_event,
    user_typing_event,
)
from app.services import participant_service, room_service
from app.services.presence_service import PresenceCoordinator
from app.websockets.broadcast import BroadcastEngine
from app.websockets.connection_manager import ConnectionBinding, ConnectionManager, manager

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """연결 시점에 확정되는 클라이언트 정보"""
    origin: str
    user_agent: Optional[str] = None


class WebSocketMessageHandler:
    """
    WebSocket 이벤트 처리 핸들러 (Connection Gateway)

    이벤트마다 새 DB 세션을 열고, 오류는 요청한 연결에만 error 이벤트로 돌려준다.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        coordinator: PresenceCoordinator,
        engine: BroadcastEngine
    ):
        self.connections = connections
        self.coordinator = coordinator
        self.engine = engine

    async def handle_event(
        self,
        connection_id: str,
        data: Any,
        session_factory: Callable[[], AsyncSession],
        client: ClientInfo
    ):
        """
        수신한 이벤트 하나를 처리합니다.

        Args:
            connection_id: 등록된 연결 ID
            data: 클라이언트가 보낸 JSON
            session_factory: 이벤트 처리용 세션 팩토리
            client: 연결의 origin / user agent
        """
        event_type = data.get("type") if isinstance(data, dict) else None
        try:
            event = parse_inbound_event(data)
            async with session_factory() as db:
                if isinstance(event, JoinRoomEvent):
                    await self._handle_join(db, connection_id, event, client)
                elif isinstance(event, AttachEvent):
                    await self._handle_attach(db, connection_id, event)
                elif isinstance(event, SendMessageEvent):
                    await self._handle_send_message(db, connection_id, event)
                elif isinstance(event, TypingEvent):
                    await self._handle_typing(connection_id, event)
                elif isinstance(event, DeleteMessageEvent):
                    await self._handle_delete_message(db, connection_id, event)
                elif isinstance(event, LeaveRoomEvent):
                    await self._handle_leave(db, connection_id)
                elif isinstance(event, PingEvent):
                    await self._handle_ping(db, connection_id)

        except BaseCustomException as e:
            logger.info(
                f"Event {event_type} rejected: {e}",
                extra={"connection_id": connection_id, "error": e.error}
            )
            self.connections.enqueue(connection_id, error_event(e))

        except Exception:
            logger.exception(
                f"Unexpected error handling event {event_type}",
                extra={"connection_id": connection_id}
            )
            self.connections.enqueue(connection_id, {"type": "error", **internal_error_payload()})

    def _require_binding(self, connection_id: str) -> ConnectionBinding:
        binding = self.connections.get_binding(connection_id)
        if binding is None:
            raise NotInRoomException()
        return binding

    # =========================================================================
    # 이벤트별 처리
    # =========================================================================

    async def _handle_join(self, db: AsyncSession, connection_id: str, event: JoinRoomEvent, client: ClientInfo):
        """join_room: 입장 후 바인딩, 본인에게 room_joined, 나머지에게 user_joined"""
        await check_join_rate_limit(client.origin)

        previous = self.connections.get_binding(connection_id)
        try:
            result = await self.coordinator.join(
                db,
                event.pin,
                event.nickname,
                client.origin,
                user_agent=client.user_agent,
                connection_id=connection_id
            )
        except BaseCustomException:
            # 이전 방에서 해제된 뒤 새 방 예약이 실패한 경우
            if previous is not None:
                await self._reconcile_binding(db, previous)
            raise

        # 이전 방에서 밀려난 바인딩 정리
        if result.displaced:
            await self.connections.unbind(connection_id)
            await self.broadcast_left(result.displaced)

        participant = result.participant
        room = result.room
        await self.connections.bind(connection_id, ConnectionBinding(
            connection_id=connection_id,
            session_token=participant.session_token,
            participant_id=participant.id,
            room_id=room.id,
            nickname=participant.nickname
        ))

        members = await participant_service.list_room_participants(db, room.id)
        self.connections.enqueue(
            connection_id,
            room_joined_event(participant, room, len(members), members)
        )
        await self.connections.broadcast_to_room(
            room.id,
            user_joined_event(room.id, participant),
            exclude=connection_id
        )
        log_websocket_event(logger, "join", participant.id, room.id, nickname=participant.nickname)

    async def _handle_attach(self, db: AsyncSession, connection_id: str, event: AttachEvent):
        """attach: HTTP로 입장한 참여자를 이 연결에 바인딩"""
        participant = await participant_service.find_by_session_token(db, event.session_token)
        if participant is None or not participant.is_online or participant.current_room_id is None:
            raise invalid_session_error()

        current = self.connections.get_binding(connection_id)
        if current is not None and current.participant_id != participant.id:
            await self.connections.unbind(connection_id)
            left = await self.coordinator.leave(db, current.participant_id, reason="moved")
            if left is not None:
                await self.broadcast_left([left])

        # 같은 참여자가 다른 연결에 붙어 있었다면 그 연결에 알린다
        previous_connection = self.connections.find_by_participant(participant.id)
        if previous_connection is not None and previous_connection != connection_id:
            self.connections.enqueue(previous_connection, left_room_event(participant.current_room_id))

        room = await room_service.get_room(db, participant.current_room_id)
        await self.connections.bind(connection_id, ConnectionBinding(
            connection_id=connection_id,
            session_token=participant.session_token,
            participant_id=participant.id,
            room_id=room.id,
            nickname=participant.nickname
        ))
        await participant_service.touch(db, participant.id)

        members = await participant_service.list_room_participants(db, room.id)
        self.connections.enqueue(
            connection_id,
            room_joined_event(participant, room, len(members), members)
        )
        log_websocket_event(logger, "attach", participant.id, room.id)

    async def _handle_send_message(self, db: AsyncSession, connection_id: str, event: SendMessageEvent):
        """send_message: 발신자 포함 방 전체로 new_message"""
        binding = self._require_binding(connection_id)
        await self.engine.send(
            db,
            binding.participant_id,
            binding.room_id,
            kind=event.kind,
            content=event.content,
            file=event.file
        )

    async def _handle_typing(self, connection_id: str, event: TypingEvent):
        """typing: 저장 없이 다른 참여자에게만 전달"""
        binding = self._require_binding(connection_id)
        await self.connections.broadcast_to_room(
            binding.room_id,
            user_typing_event(binding.room_id, binding.participant_id, binding.nickname, event.is_typing),
            exclude=connection_id
        )

    async def _handle_delete_message(self, db: AsyncSession, connection_id: str, event: DeleteMessageEvent):
        binding = self._require_binding(connection_id)
        await self.engine.delete(db, event.message_id, binding.participant_id)

    async def _handle_leave(self, db: AsyncSession, connection_id: str):
        """leave_room: 연결 해제와 같은 해제 경로 후 본인에게 left_room"""
        binding = await self.connections.unbind(connection_id)
        if binding is None:
            self.connections.enqueue(connection_id, left_room_event(None))
            return

        await self._release(db, binding, reason="leave")
        self.connections.enqueue(connection_id, left_room_event(binding.room_id))

    async def _handle_ping(self, db: AsyncSession, connection_id: str):
        """ping: 하트비트 갱신 후 pong"""
        binding = self.connections.get_binding(connection_id)
        if binding is not None:
            await participant_service.touch(db, binding.participant_id)
        self.connections.enqueue(connection_id, pong_event())

    # =========================================================================
    # 해제 / 알림
    # =========================================================================

    async def _release(self, db: AsyncSession, binding: ConnectionBinding, reason: str) -> Optional[ParticipantLeft]:
        left = await self.coordinator.leave(db, binding.participant_id, reason=reason)
        if left is not None:
            await self.broadcast_left([left])
        log_websocket_event(logger, reason, binding.participant_id, binding.room_id)
        return left

    async def _reconcile_binding(self, db: AsyncSession, binding: ConnectionBinding):
        """디렉터리에서 이미 해제된 바인딩이면 연결에서도 제거하고 user_left 전달"""
        participant = await participant_service.find_by_id(db, binding.participant_id)
        if participant is not None and participant.current_room_id == binding.room_id:
            return

        await self.connections.unbind(binding.connection_id)
        await self.connections.broadcast_to_room(
            binding.room_id,
            user_left_event(binding.room_id, binding.participant_id, binding.nickname, "moved")
        )

    async def disconnect(self, connection_id: str, session_factory: Callable[[], AsyncSession]):
        """연결 종료 (close frame, 수신 오류, idle timeout): leave_room과 같은 해제 경로"""
        binding = await self.connections.unregister(connection_id)
        if binding is None:
            return

        try:
            async with session_factory() as db:
                await self._release(db, binding, reason="disconnect")
        except Exception:
            logger.exception(
                f"Failed to release participant {binding.participant_id} on disconnect",
                extra={"connection_id": connection_id, "room_id": binding.room_id}
            )

    async def broadcast_left(self, events: Iterable[ParticipantLeft]):
        """ParticipantLeft 이벤트를 해당 방 남은 연결에 user_left로 전달"""
        for event in events:
            await self.connections.broadcast_to_room(
                event.room_id,
                user_left_event(event.room_id, event.participant_id, event.nickname, event.reason)
            )

    async def notify_left(self, events: Iterable[ParticipantLeft]):
        """
        디렉터리에서 이미 해제된 참여자의 연결을 정리합니다.

        HTTP 퇴장, 비활성 만료, 정원 축소에 사용된다. 해당 연결은 바인딩을 잃고
        left_room을 받으며, 방의 나머지 연결은 user_left를 받는다.
        """
        events = list(events)
        for event in events:
            connection_id = self.connections.find_by_participant(event.participant_id)
            if connection_id is None:
                continue
            await self.connections.unbind_participant(event.participant_id)
            payload = left_room_event(event.room_id)
            payload["reason"] = event.reason
            self.connections.enqueue(connection_id, payload)
        await self.broadcast_left(events)

    async def notify_room_closed(self, room_id: str, events: Iterable[ParticipantLeft], reason: str = "closed"):
        """방 비활성화: 쫓겨난 연결에 room_closed를 보내고 바인딩을 해제합니다."""
        closed_event = room_closed_event(room_id, reason)
        for event in events:
            connection_id = self.connections.find_by_participant(event.participant_id)
            if connection_id is None:
                continue
            await self.connections.unbind_participant(event.participant_id)
            self.connections.enqueue(connection_id, closed_event)

        # 디렉터리에 없던 잔여 바인딩도 정리
        for binding in self.connections.bindings_for_room(room_id):
            await self.connections.unbind(binding.connection_id)
            self.connections.enqueue(binding.connection_id, closed_event)

        self.engine.discard_room(room_id)

    async def notify_joined(self, room_id: str, participant):
        """HTTP로 입장한 참여자를 방 연결들에 알림"""
        await self.connections.broadcast_to_room(room_id, user_joined_event(room_id, participant))


# 전역 인스턴스
coordinator = PresenceCoordinator(manager)
broadcast_engine = BroadcastEngine(manager)
message_handler = WebSocketMessageHandler(manager, coordinator, broadcast_engine)
