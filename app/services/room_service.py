"""
Room registry service layer.

PIN 기반 채팅방의 생성, 조회, 비활성화, 정책 검사를 담당합니다.
"""

import secrets
from typing import Optional, List, Tuple, Dict, Any

from sqlalchemy import select, func, delete, and_, or_, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    AuthorizationException,
    FileTooLargeException,
    FileTypeNotAllowedException,
    PinExhaustedException,
    RoomExpiredException,
    room_not_found_error,
)
from app.core.logging import get_logger, log_room_event
from app.core.validators import Validator, ROOM_KINDS, split_file_types
from app.domain.events.room_events import ParticipantLeft, RoomDeactivated
from app.infrastructure.kafka.producer import publish_event
from app.models.messages import Message
from app.models.participants import Participant
from app.models.rooms import Room
from app.schemas.room import RoomCreate, RoomUpdate
from app.services import participant_service
from app.utils.time_utils import utc_now, to_naive_utc

logger = get_logger(__name__)

PIN_MIN = 100000
PIN_MAX = 999999


def generate_pin() -> str:
    """6자리 숫자 PIN 샘플링"""
    return str(PIN_MIN + secrets.randbelow(PIN_MAX - PIN_MIN + 1))


async def _pin_in_use(db: AsyncSession, pin: str) -> bool:
    result = await db.execute(
        select(Room.id).where(Room.active_pin == pin).limit(1)
    )
    return result.scalar_one_or_none() is not None


def _validate_policy(
    kind: Optional[str],
    max_participants: Optional[int],
    max_file_size: Optional[int]
) -> None:
    if kind is not None:
        Validator.validate_enum(kind, ROOM_KINDS, "kind")
    if max_participants is not None:
        Validator.validate_capacity(max_participants)
    if max_file_size is not None:
        Validator.validate_positive_integer(max_file_size, "max_file_size")


# =============================================================================
# Room CRUD Operations
# =============================================================================

async def create_room(db: AsyncSession, owner_id: str, spec: RoomCreate) -> Room:
    """
    채팅방 생성

    이름/정원/파일 정책을 검증하고 활성 방 사이에서 유일한 6자리 PIN을 발급합니다.
    PIN 충돌(사전 조회 또는 유니크 제약 위반) 시 pin_max_attempts까지 재시도합니다.

    Raises:
        ValidationException: 입력값 검증 실패
        PinExhaustedException: PIN 발급 실패
    """
    name = Validator.validate_room_name(spec.name)
    kind = spec.kind or "text"
    max_participants = spec.max_participants if spec.max_participants is not None else settings.default_max_participants
    max_file_size = spec.max_file_size if spec.max_file_size is not None else settings.default_max_file_size
    _validate_policy(kind, max_participants, max_file_size)
    allowed_file_types = Validator.validate_file_types(spec.allowed_file_types)
    expires_at = to_naive_utc(spec.expires_at)

    for attempt in range(1, settings.pin_max_attempts + 1):
        pin = generate_pin()
        if await _pin_in_use(db, pin):
            logger.debug(f"PIN collision on pre-check (attempt {attempt})")
            continue

        room = Room(
            name=name,
            description=spec.description,
            pin=pin,
            active_pin=pin,
            kind=kind,
            max_participants=max_participants,
            max_file_size=max_file_size,
            allowed_file_types=allowed_file_types,
            is_active=True,
            owner_id=str(owner_id),
            expires_at=expires_at
        )
        db.add(room)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.debug(f"PIN collision on insert (attempt {attempt})")
            continue

        await db.refresh(room)
        log_room_event(logger, "created", room.id, owner_id=str(owner_id), attempts=attempt)
        return room

    logger.error(f"Failed to allocate a unique PIN after {settings.pin_max_attempts} attempts")
    raise PinExhaustedException(settings.pin_max_attempts)


async def find_by_id(db: AsyncSession, room_id: str) -> Optional[Room]:
    """채팅방 ID로 조회"""
    result = await db.execute(
        select(Room).where(Room.id == room_id)
    )
    return result.scalar_one_or_none()


async def get_room(db: AsyncSession, room_id: str) -> Room:
    """채팅방 조회 (없으면 404)"""
    room = await find_by_id(db, room_id)
    if room is None:
        raise room_not_found_error(room_id=room_id)
    return room


async def _mark_inactive(db: AsyncSession, room: Room) -> None:
    room.is_active = False
    room.active_pin = None
    room.updated_at = utc_now()
    await db.commit()


async def find_by_pin(db: AsyncSession, pin: str) -> Room:
    """
    PIN으로 활성 채팅방 조회

    만료 시각이 지난 방은 이 자리에서 비활성화하고 RoomExpiredException을 던집니다.
    남아 있는 참여자는 유지보수 작업이 정리합니다.
    """
    pin = Validator.validate_pin(pin)
    result = await db.execute(
        select(Room).where(Room.active_pin == pin)
    )
    room = result.scalar_one_or_none()

    if room is None or not room.is_active:
        raise room_not_found_error(pin=pin)

    if room.is_expired():
        await _mark_inactive(db, room)
        log_room_event(logger, "expired", room.id, pin=pin)
        raise RoomExpiredException(room.id)

    return room


async def get_room_for_owner(db: AsyncSession, room_id: str, owner_id: str) -> Room:
    """관리자 소유 채팅방 조회 (소유자가 아니면 403)"""
    room = await get_room(db, room_id)
    if room.owner_id != str(owner_id):
        raise AuthorizationException(
            "You do not own this room",
            details={"room_id": room_id}
        )
    return room


async def list_owner_rooms(
    db: AsyncSession,
    owner_id: str,
    skip: int = 0,
    limit: int = 20,
    include_inactive: bool = False
) -> Tuple[List[Room], int]:
    """관리자의 채팅방 목록 조회 (최신순)"""
    conditions = [Room.owner_id == str(owner_id)]
    if not include_inactive:
        conditions.append(Room.is_active == True)  # noqa: E712

    total = (await db.execute(
        select(func.count(Room.id)).where(and_(*conditions))
    )).scalar() or 0

    result = await db.execute(
        select(Room)
        .where(and_(*conditions))
        .order_by(Room.created_at.desc(), Room.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def capacity_remaining(db: AsyncSession, room_id: str) -> int:
    """정원 - 현재 온라인 인원"""
    room = await get_room(db, room_id)
    online = await participant_service.count_online(db, room_id)
    return max(room.max_participants - online, 0)


async def update_room(
    db: AsyncSession,
    room_id: str,
    owner_id: str,
    data: RoomUpdate,
    coordinator
) -> Tuple[Room, List[ParticipantLeft]]:
    """
    채팅방 수정

    정원이 줄어 현재 인원을 넘으면 가장 최근에 입장한 참여자부터 강제 퇴장시킵니다.
    """
    room = await get_room_for_owner(db, room_id, owner_id)
    changes = data.model_dump(exclude_unset=True)

    _validate_policy(changes.get("kind"), changes.get("max_participants"), changes.get("max_file_size"))

    if "name" in changes:
        room.name = Validator.validate_room_name(changes["name"])
    if "description" in changes:
        room.description = changes["description"]
    if changes.get("kind") is not None:
        room.kind = changes["kind"]
    if changes.get("max_participants") is not None:
        room.max_participants = changes["max_participants"]
    if changes.get("max_file_size") is not None:
        room.max_file_size = changes["max_file_size"]
    if "allowed_file_types" in changes:
        room.allowed_file_types = Validator.validate_file_types(changes["allowed_file_types"])
    if "expires_at" in changes:
        room.expires_at = to_naive_utc(changes["expires_at"])

    room.updated_at = utc_now()
    await db.commit()
    await db.refresh(room)
    log_room_event(logger, "updated", room.id, fields=sorted(changes.keys()))

    evicted: List[ParticipantLeft] = []
    if room.is_active:
        evicted = await coordinator.evict_overflow(db, room.id, room.max_participants)

    return room, evicted


async def deactivate_room(
    db: AsyncSession,
    room_id: str,
    owner_id: Optional[str],
    coordinator,
    reason: str = "closed"
) -> Tuple[Room, List[ParticipantLeft]]:
    """
    채팅방 비활성화

    소유권을 확인한 뒤 활성 PIN을 반납하고, Presence Coordinator를 통해
    모든 온라인 참여자를 강제 퇴장시킵니다. owner_id가 None이면 시스템(만료 처리) 호출입니다.
    """
    if owner_id is None:
        room = await get_room(db, room_id)
    else:
        room = await get_room_for_owner(db, room_id, owner_id)

    # 예약 락 + 행 잠금 안에서 먼저 비활성화한다. 이후의 reserve_slot은 is_active 재검사에서 거절된다
    async with participant_service.room_lock(room.id):
        await db.commit()
        result = await db.execute(
            select(Room)
            .where(Room.id == room.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        room = result.scalar_one()
        if room.is_active:
            await _mark_inactive(db, room)
        else:
            await db.commit()

    evicted = await coordinator.evict_room(db, room.id, reason="room_closed")

    log_room_event(logger, "deactivated", room.id, reason=reason, evicted=len(evicted))
    await publish_event(RoomDeactivated(
        room_id=room.id,
        reason=reason,
        evicted_count=len(evicted),
        timestamp=utc_now()
    ))
    return room, evicted


async def delete_room(
    db: AsyncSession,
    room_id: str,
    owner_id: str,
    coordinator
) -> List[ParticipantLeft]:
    """채팅방 영구 삭제 (활성 상태면 먼저 비활성화, 메시지 포함)"""
    room = await get_room_for_owner(db, room_id, owner_id)

    evicted: List[ParticipantLeft] = []
    if room.is_active or await participant_service.count_online(db, room.id):
        room, evicted = await deactivate_room(db, room.id, owner_id, coordinator, reason="deleted")

    await db.execute(
        delete(Message).where(Message.room_id == room.id).execution_options(synchronize_session=False)
    )
    await db.delete(room)
    await db.commit()

    participant_service.discard_room_lock(room_id)
    log_room_event(logger, "deleted", room_id)
    return evicted


async def get_room_stats(db: AsyncSession, room_id: str) -> Dict[str, Any]:
    """채팅방 통계"""
    room = await get_room(db, room_id)
    online = await participant_service.count_online(db, room_id)
    total = await participant_service.count_total(db, room_id)
    message_count = (await db.execute(
        select(func.count(Message.id)).where(
            and_(Message.room_id == room_id, Message.is_deleted == False)  # noqa: E712
        )
    )).scalar() or 0

    return {
        "room_id": room_id,
        "online_participants": online,
        "total_participants": total,
        "message_count": message_count,
        "capacity_remaining": max(room.max_participants - online, 0)
    }


async def find_expired_rooms(db: AsyncSession) -> List[Room]:
    """
    만료 처리가 필요한 방 목록

    아직 활성인 만료 방과, PIN 조회 시점에 비활성화되었지만
    온라인 참여자가 남아 있는 만료 방을 함께 반환합니다.
    """
    has_online = exists().where(
        and_(
            Participant.current_room_id == Room.id,
            Participant.is_online == True  # noqa: E712
        )
    )
    result = await db.execute(
        select(Room).where(
            and_(
                Room.expires_at.is_not(None),
                Room.expires_at <= utc_now(),
                or_(Room.is_active == True, has_online)  # noqa: E712
            )
        )
    )
    return list(result.scalars().all())


# =============================================================================
# 파일 정책
# =============================================================================

def check_file_policy(room: Room, size: int, mime_type: Optional[str]) -> None:
    """
    파일 전송 정책 검사

    Raises:
        FileTypeNotAllowedException: 텍스트 전용 방이거나 허용되지 않은 MIME 타입
        FileTooLargeException: 방 최대 파일 크기 초과
    """
    allowed = split_file_types(room.allowed_file_types)

    if room.kind != "multimedia":
        raise FileTypeNotAllowedException(
            mime_type,
            allowed,
            message="File uploads are not allowed in text-only rooms"
        )

    if size > room.max_file_size:
        raise FileTooLargeException(size, room.max_file_size)

    if not mime_type or mime_type.lower() not in allowed:
        raise FileTypeNotAllowedException(mime_type, allowed)
