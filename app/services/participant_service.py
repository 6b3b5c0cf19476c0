"""
Participant directory service layer.

참여자 슬롯 예약/해제와 조회를 담당합니다.
reserve_slot은 방 단위로 직렬화되는 유일한 쓰기 경로입니다.
"""

import asyncio
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, func, update, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.errors import (
    ConflictException,
    DuplicateConnectionException,
    NicknameTakenException,
    RoomExpiredException,
    RoomFullException,
    room_not_found_error,
)
from app.core.logging import get_logger
from app.core.validators import Validator
from app.models.messages import Message
from app.models.participants import Participant
from app.models.rooms import Room
from app.utils.time_utils import utc_now

logger = get_logger(__name__)

# 방별 예약 락 (같은 프로세스 내 동시 입장 직렬화)
_room_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


def room_lock(room_id: str) -> asyncio.Lock:
    """방 예약 락 반환"""
    return _room_locks[room_id]


def discard_room_lock(room_id: str) -> None:
    """삭제된 방의 락 정리"""
    lock = _room_locks.get(room_id)
    if lock is not None and not lock.locked():
        _room_locks.pop(room_id, None)


# =============================================================================
# 조회
# =============================================================================

async def find_by_id(db: AsyncSession, participant_id: int) -> Optional[Participant]:
    """참여자 ID로 조회"""
    result = await db.execute(
        select(Participant)
        .where(Participant.id == participant_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_by_session_token(db: AsyncSession, session_token: str) -> Optional[Participant]:
    """세션 토큰으로 조회"""
    if not session_token:
        return None
    result = await db.execute(
        select(Participant)
        .where(Participant.session_token == session_token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_online(db: AsyncSession, room_id: str) -> int:
    """방에 바인딩된 온라인 참여자 수"""
    result = await db.execute(
        select(func.count(Participant.id)).where(
            and_(
                Participant.current_room_id == room_id,
                Participant.is_online == True  # noqa: E712
            )
        )
    )
    return result.scalar() or 0


async def count_total(db: AsyncSession, room_id: str) -> int:
    """방에 한 번이라도 메시지를 남겼거나 현재 바인딩된 참여자 수"""
    senders = select(Message.sender_id).where(
        and_(Message.room_id == room_id, Message.sender_id.is_not(None))
    )
    result = await db.execute(
        select(func.count(Participant.id)).where(
            (Participant.current_room_id == room_id) | (Participant.id.in_(senders))
        )
    )
    return result.scalar() or 0


async def list_room_participants(db: AsyncSession, room_id: str) -> List[Participant]:
    """방의 온라인 참여자 목록 (입장 순)"""
    result = await db.execute(
        select(Participant).where(
            and_(
                Participant.current_room_id == room_id,
                Participant.is_online == True  # noqa: E712
            )
        ).order_by(Participant.joined_at.asc(), Participant.id.asc())
    )
    return list(result.scalars().all())


async def _find_conflict(
    db: AsyncSession,
    room_id: str,
    nickname: str,
    origin: str
) -> Optional[ConflictException]:
    """닉네임 / origin 충돌 검사. 충돌 시 던질 예외를 반환"""
    result = await db.execute(
        select(Participant.id).where(
            and_(
                Participant.current_room_id == room_id,
                Participant.nickname == nickname
            )
        ).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        return NicknameTakenException(nickname)

    if settings.enforce_origin_uniqueness:
        result = await db.execute(
            select(Participant.id).where(
                and_(
                    Participant.current_room_id == room_id,
                    Participant.origin_slot == origin
                )
            ).limit(1)
        )
        if result.scalar_one_or_none() is not None:
            return DuplicateConnectionException()

    return None


# =============================================================================
# 슬롯 예약 / 해제
# =============================================================================

async def reserve_slot(
    db: AsyncSession,
    room_id: str,
    nickname: str,
    origin: str,
    user_agent: Optional[str] = None
) -> Participant:
    """
    방에 참여자 슬롯을 원자적으로 예약합니다.

    방 락 + 방 행 잠금 안에서 활성 상태, 정원, 닉네임/origin 충돌을 다시 검사한 뒤
    참여자를 생성하고 커밋합니다. 다른 프로세스와의 경합으로 유니크 제약 위반이
    발생하면 충돌 예외로 변환합니다.

    Raises:
        ResourceNotFoundException: 방이 없거나 비활성
        RoomExpiredException: 방이 만료됨
        RoomFullException: 정원 초과
        NicknameTakenException / DuplicateConnectionException: 충돌
    """
    nickname = Validator.validate_nickname(nickname)

    async with room_lock(room_id):
        # 새 트랜잭션에서 최신 상태를 읽는다
        await db.commit()

        result = await db.execute(
            select(Room)
            .where(Room.id == room_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        room = result.scalar_one_or_none()

        try:
            if room is None or not room.is_active:
                raise room_not_found_error(room_id=room_id)
            if room.is_expired():
                raise RoomExpiredException(room_id)

            online = await count_online(db, room_id)
            if online >= room.max_participants:
                raise RoomFullException(room.max_participants)

            conflict = await _find_conflict(db, room_id, nickname, origin)
            if conflict is not None:
                raise conflict
        except Exception:
            # 읽기만 했으므로 커밋으로 행 잠금만 푼다
            await db.commit()
            raise

        now = utc_now()
        participant = Participant(
            nickname=nickname,
            origin_address=origin,
            origin_slot=origin if settings.enforce_origin_uniqueness else None,
            user_agent=user_agent[:512] if user_agent else None,
            current_room_id=room_id,
            is_online=True,
            last_activity=now,
            joined_at=now
        )
        db.add(participant)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            conflict = await _find_conflict(db, room_id, nickname, origin)
            logger.info(
                f"Slot reservation lost a race in room {room_id}",
                extra={"room_id": room_id, "nickname": nickname}
            )
            raise conflict or ConflictException("Participant slot conflict")

        await db.refresh(participant)

    logger.info(
        f"Participant {participant.id} reserved a slot in room {room_id}",
        extra={"participant_id": participant.id, "room_id": room_id}
    )
    return participant


async def release(db: AsyncSession, participant_id: int) -> Optional[str]:
    """
    참여자를 방에서 해제합니다 (멱등).

    Returns:
        비워진 방 ID. 이미 해제되었거나 없는 참여자면 None
    """
    participant = await find_by_id(db, participant_id)
    if participant is None or participant.current_room_id is None:
        if participant is not None and participant.is_online:
            participant.is_online = False
            await db.commit()
        return None

    room_id = participant.current_room_id
    result = await db.execute(
        update(Participant)
        .where(
            and_(
                Participant.id == participant_id,
                Participant.current_room_id == room_id
            )
        )
        .values(current_room_id=None, is_online=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    # 동시에 다른 경로가 먼저 해제한 경우
    if result.rowcount == 0:
        return None

    set_committed_value(participant, "current_room_id", None)
    set_committed_value(participant, "is_online", False)
    logger.info(
        f"Participant {participant_id} released from room {room_id}",
        extra={"participant_id": participant_id, "room_id": room_id}
    )
    return room_id


async def touch(db: AsyncSession, participant_id: int) -> bool:
    """하트비트: 마지막 활동 시각 갱신"""
    result = await db.execute(
        update(Participant)
        .where(Participant.id == participant_id)
        .values(last_activity=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount > 0


async def sweep_inactive(db: AsyncSession, threshold_minutes: int) -> List[Participant]:
    """
    마지막 활동이 threshold_minutes 이전인 온라인 참여자를 오프라인 처리합니다.

    행은 삭제하지 않고 방 바인딩만 해제합니다. 반환되는 객체의
    current_room_id는 해제 전 방 ID를 유지합니다 (알림용).
    """
    cutoff = utc_now() - timedelta(minutes=threshold_minutes)
    result = await db.execute(
        select(Participant).where(
            and_(
                Participant.is_online == True,  # noqa: E712
                Participant.last_activity < cutoff
            )
        )
    )
    stale = list(result.scalars().all())
    if not stale:
        return []

    swept = []
    for participant in stale:
        room_id = participant.current_room_id
        update_result = await db.execute(
            update(Participant)
            .where(
                and_(
                    Participant.id == participant.id,
                    Participant.is_online == True  # noqa: E712
                )
            )
            .values(current_room_id=None, is_online=False)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount:
            swept.append((participant, room_id))
    await db.commit()

    # 세션에서 분리한 스냅샷으로 돌려준다 (current_room_id는 해제 전 방)
    for participant, room_id in swept:
        db.expunge(participant)
        participant.is_online = False
        participant.current_room_id = room_id

    logger.info(f"Swept {len(swept)} inactive participants (>{threshold_minutes}m)")
    return [participant for participant, _ in swept]


async def purge_stale(db: AsyncSession, hours: int) -> int:
    """
    오프라인 상태로 hours 이상 지난 참여자 행을 영구 삭제합니다.

    메시지의 sender_id는 NULL로 돌리고 sender_nickname은 남깁니다.
    """
    cutoff = utc_now() - timedelta(hours=hours)
    stale_ids = select(Participant.id).where(
        and_(
            Participant.is_online == False,  # noqa: E712
            Participant.current_room_id.is_(None),
            Participant.last_activity < cutoff
        )
    )
    result = await db.execute(stale_ids)
    ids = [row[0] for row in result.all()]
    if not ids:
        return 0

    await db.execute(
        update(Message)
        .where(Message.sender_id.in_(ids))
        .values(sender_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(Participant)
        .where(Participant.id.in_(ids))
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(f"Purged {len(ids)} stale participants (>{hours}h)")
    return len(ids)
