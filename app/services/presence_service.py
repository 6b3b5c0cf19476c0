"""
Presence & membership coordinator.

입장/퇴장/강제 퇴장을 조율합니다. 실제 상태 변경은 participant_service가 하고,
이 모듈은 Connection Gateway의 바인딩 테이블을 읽기 전용으로만 참조합니다.
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import RoomFullException
from app.core.logging import get_logger
from app.domain.events.room_events import ParticipantJoined, ParticipantLeft
from app.infrastructure.kafka.producer import publish_event
from app.models.participants import Participant
from app.models.rooms import Room
from app.services import participant_service, room_service
from app.utils.time_utils import utc_now

logger = get_logger(__name__)


class PresenceState(str, enum.Enum):
    """참여자 상태. JOINING/LEAVING은 디렉터리 작업이 진행되는 동안만 유지된다"""
    UNBOUND = "unbound"
    JOINING = "joining"
    BOUND = "bound"
    LEAVING = "leaving"


@dataclass
class JoinResult:
    participant: Participant
    room: Room
    displaced: List[ParticipantLeft] = field(default_factory=list)


def _left_event(participant_id: int, nickname: str, room_id: str, reason: str) -> ParticipantLeft:
    return ParticipantLeft(
        room_id=room_id,
        participant_id=participant_id,
        nickname=nickname,
        reason=reason,
        timestamp=utc_now()
    )


class PresenceCoordinator:
    """
    Presence & Membership Coordinator

    Args:
        bindings: 연결 바인딩 조회용 객체. get_binding(connection_id)와
            find_by_participant(participant_id)를 제공해야 한다 (ConnectionManager).
    """

    def __init__(self, bindings):
        self._bindings = bindings
        self._joining: Set[str] = set()
        self._leaving: Set[int] = set()

    def state_of(self, participant_id: int) -> PresenceState:
        """참여자의 현재 상태"""
        if participant_id in self._leaving:
            return PresenceState.LEAVING
        if self._bindings.find_by_participant(participant_id) is not None:
            return PresenceState.BOUND
        return PresenceState.UNBOUND

    def connection_state(self, connection_id: str) -> PresenceState:
        """연결 기준 상태"""
        if connection_id in self._joining:
            return PresenceState.JOINING
        binding = self._bindings.get_binding(connection_id)
        if binding is None:
            return PresenceState.UNBOUND
        return self.state_of(binding.participant_id)

    async def join(
        self,
        db: AsyncSession,
        pin: str,
        nickname: str,
        origin: str,
        user_agent: Optional[str] = None,
        connection_id: Optional[str] = None
    ) -> JoinResult:
        """
        PIN + 닉네임으로 입장

        연결이 이미 다른 참여자에 바인딩되어 있으면 그 참여자를 먼저 해제하고
        displaced에 ParticipantLeft(reason="moved")를 담아 돌려준다.

        Raises:
            ResourceNotFoundException, RoomExpiredException, RoomFullException,
            NicknameTakenException, DuplicateConnectionException, ValidationException
        """
        room = await room_service.find_by_pin(db, pin)
        binding = self._bindings.get_binding(connection_id) if connection_id else None

        # 빠른 실패용 정원 조회. 최종 판정은 reserve_slot 안에서 다시 한다
        # 같은 방에 이미 바인딩된 연결은 자기 자리를 비우고 들어오므로 건너뛴다
        if binding is None or binding.room_id != room.id:
            online = await participant_service.count_online(db, room.id)
            if online >= room.max_participants:
                raise RoomFullException(room.max_participants)

        if connection_id is not None:
            self._joining.add(connection_id)
        try:
            displaced: List[ParticipantLeft] = []
            if binding is not None:
                event = await self.leave(db, binding.participant_id, reason="moved")
                if event is not None:
                    displaced.append(event)

            participant = await participant_service.reserve_slot(
                db, room.id, nickname, origin, user_agent
            )
        finally:
            if connection_id is not None:
                self._joining.discard(connection_id)

        await publish_event(ParticipantJoined(
            room_id=room.id,
            participant_id=participant.id,
            nickname=participant.nickname,
            timestamp=utc_now()
        ))
        return JoinResult(participant=participant, room=room, displaced=displaced)

    async def leave(
        self,
        db: AsyncSession,
        participant_id: int,
        reason: str = "leave"
    ) -> Optional[ParticipantLeft]:
        """
        퇴장 (멱등)

        Returns:
            실제로 방에서 해제되었으면 ParticipantLeft, 이미 해제된 상태면 None
        """
        if participant_id in self._leaving:
            return None

        self._leaving.add(participant_id)
        try:
            participant = await participant_service.find_by_id(db, participant_id)
            if participant is None:
                return None
            nickname = participant.nickname
            room_id = await participant_service.release(db, participant_id)
        finally:
            self._leaving.discard(participant_id)

        if room_id is None:
            return None

        event = _left_event(participant_id, nickname, room_id, reason)
        await publish_event(event)
        return event

    async def evict_room(self, db: AsyncSession, room_id: str, reason: str) -> List[ParticipantLeft]:
        """방의 모든 온라인 참여자 강제 퇴장 (참여자당 이벤트 1개)"""
        participants = await participant_service.list_room_participants(db, room_id)
        return await self._evict(db, participants, reason)

    async def evict_overflow(self, db: AsyncSession, room_id: str, capacity: int) -> List[ParticipantLeft]:
        """정원 초과분을 가장 최근 입장자부터 강제 퇴장"""
        participants = await participant_service.list_room_participants(db, room_id)
        overflow = len(participants) - capacity
        if overflow <= 0:
            return []
        newest_first = list(reversed(participants))[:overflow]
        return await self._evict(db, newest_first, "capacity_reduced")

    async def _evict(self, db: AsyncSession, participants: List[Participant], reason: str) -> List[ParticipantLeft]:
        events = []
        for participant in participants:
            event = await self.leave(db, participant.id, reason=reason)
            if event is not None:
                events.append(event)
        if events:
            logger.info(f"Evicted {len(events)} participants (reason={reason})")
        return events

    async def expire_inactive(
        self,
        db: AsyncSession,
        threshold_minutes: Optional[int] = None
    ) -> List[ParticipantLeft]:
        """비활성 참여자 만료 처리"""
        minutes = threshold_minutes if threshold_minutes is not None else settings.participant_inactive_minutes
        swept = await participant_service.sweep_inactive(db, minutes)

        events = []
        for participant in swept:
            if participant.current_room_id is None:
                continue
            event = _left_event(participant.id, participant.nickname, participant.current_room_id, "inactive")
            await publish_event(event)
            events.append(event)
        return events
