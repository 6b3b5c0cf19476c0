"""
Message service layer.

Handles persistence, history reads and soft deletion of room messages.
메시지 순서는 autoincrement id 순서와 같습니다.
"""

from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    AuthorizationException,
    NotInRoomException,
    RoomExpiredException,
    ResourceNotFoundException,
    ValidationException,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.validators import Validator
from app.domain.events.message_events import MessageSent, MessageDeleted
from app.infrastructure.kafka.producer import publish_event
from app.models.messages import Message
from app.schemas.message import FileDescriptor
from app.services import file_service, participant_service, room_service
from app.utils.time_utils import utc_now

logger = get_logger(__name__)

# 참여자가 보낼 수 있는 메시지 타입 (system은 서버 전용)
SENDABLE_KINDS = ["text", "file"]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# Message CRUD Operations
# =============================================================================

async def send_message(
    db: AsyncSession,
    sender_id: int,
    room_id: str,
    kind: str = "text",
    content: Optional[str] = None,
    file: Optional[FileDescriptor] = None
) -> Message:
    """
    참여자 메시지 저장

    Raises:
        NotInRoomException: 발신자가 해당 방에 바인딩되어 있지 않음
        ValidationException: 타입별 내용 규칙 위반, 이 방에 저장되지 않은 파일
        FileTooLargeException / FileTypeNotAllowedException: 방 파일 정책 위반
    """
    participant = await participant_service.find_by_id(db, sender_id)
    if participant is None or not participant.is_online or participant.current_room_id != room_id:
        raise NotInRoomException(room_id)

    room = await room_service.get_room(db, room_id)
    if room.is_expired():
        raise RoomExpiredException(room_id)
    if not room.is_active:
        raise NotInRoomException(room_id)

    Validator.validate_enum(kind, SENDABLE_KINDS, "kind")

    if kind == "text":
        content = Validator.validate_message_content(content)
    else:
        if file is None:
            raise ValidationException(
                "File message requires a file descriptor",
                validation_errors=[ValidationError(field="file", message="This field is required")]
            )
        # 파일 메시지의 내용은 선택 (캡션)
        if content is not None and content.strip() == "":
            content = None
        if content is not None:
            content = Validator.validate_message_content(content)
        # 크기/타입은 클라이언트 값이 아니라 저장된 파일 기준
        file = file_service.resolve_room_file(room_id, file)
        room_service.check_file_policy(room, file.size, file.mime_type)

    now = utc_now()
    message = Message(
        room_id=room_id,
        sender_id=participant.id,
        sender_nickname=participant.nickname,
        kind=kind,
        content=content,
        created_at=now
    )
    if file is not None and kind == "file":
        message.file_stored_name = file.stored_name
        message.file_original_name = file.original_name
        message.file_path = file.path
        message.file_size = file.size
        message.file_mime_type = file.mime_type

    participant.last_activity = now
    db.add(message)
    await db.commit()
    await db.refresh(message)

    logger.info(
        f"Message {message.id} sent to room {room_id}",
        extra={"message_id": message.id, "room_id": room_id, "participant_id": participant.id, "kind": kind}
    )
    await publish_event(MessageSent(
        message_id=message.id,
        room_id=room_id,
        sender_id=participant.id,
        sender_nickname=participant.nickname,
        kind=kind,
        content=content,
        timestamp=now
    ))
    return message


async def create_system_message(db: AsyncSession, room_id: str, content: str) -> Message:
    """시스템 메시지 저장 (발신자 없음)"""
    message = Message(
        room_id=room_id,
        sender_id=None,
        sender_nickname=None,
        kind="system",
        content=content,
        created_at=utc_now()
    )
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message


async def find_message_by_id(db: AsyncSession, message_id: int) -> Optional[Message]:
    """메시지 ID로 조회"""
    result = await db.execute(
        select(Message).where(Message.id == message_id)
    )
    return result.scalar_one_or_none()


async def soft_delete_message(
    db: AsyncSession,
    message_id: int,
    requester_id: int
) -> Tuple[Message, bool]:
    """
    메시지 소프트 삭제 (발신자 본인만)

    Returns:
        (메시지, 이번 호출로 삭제되었는지 여부). 이미 삭제된 메시지는 (메시지, False)
    """
    message = await find_message_by_id(db, message_id)
    if message is None:
        raise ResourceNotFoundException("Message", details={"message_id": message_id})

    if message.sender_id is None or message.sender_id != requester_id:
        raise AuthorizationException(
            "You can only delete your own messages",
            details={"message_id": message_id}
        )

    if message.is_deleted:
        return message, False

    message.is_deleted = True
    message.deleted_at = utc_now()
    await db.commit()
    await db.refresh(message)

    logger.info(
        f"Message {message_id} soft-deleted",
        extra={"message_id": message_id, "room_id": message.room_id, "participant_id": requester_id}
    )
    await publish_event(MessageDeleted(
        message_id=message.id,
        room_id=message.room_id,
        deleted_by=requester_id,
        timestamp=message.deleted_at
    ))
    return message, True


# =============================================================================
# History / Search
# =============================================================================

async def list_messages(
    db: AsyncSession,
    room_id: str,
    limit: int = 50,
    skip: int = 0,
    after_id: Optional[int] = None,
    include_deleted: bool = False
) -> List[Message]:
    """
    채팅방 메시지 목록 조회 (오래된 것부터)

    after_id가 주어지면 그 이후 메시지를 순서대로 반환합니다 (폴링용).
    아니면 최신 메시지부터 skip/limit 후 역순으로 돌려줍니다.
    """
    conditions = [Message.room_id == room_id]
    if not include_deleted:
        conditions.append(Message.is_deleted == False)  # noqa: E712

    if after_id is not None:
        conditions.append(Message.id > after_id)
        result = await db.execute(
            select(Message).where(and_(*conditions)).order_by(Message.id.asc()).limit(limit)
        )
        return list(result.scalars().all())

    result = await db.execute(
        select(Message).where(and_(*conditions)).order_by(Message.id.desc()).offset(skip).limit(limit)
    )
    messages = list(result.scalars().all())

    # 최신순으로 정렬된 것을 역순으로 변경 (오래된 것부터)
    return list(reversed(messages))


async def count_messages(db: AsyncSession, room_id: str, include_deleted: bool = False) -> int:
    """채팅방 메시지 총 개수 조회"""
    conditions = [Message.room_id == room_id]
    if not include_deleted:
        conditions.append(Message.is_deleted == False)  # noqa: E712

    result = await db.execute(select(func.count(Message.id)).where(and_(*conditions)))
    return result.scalar() or 0


def _search_conditions(room_id: str, term: str):
    pattern = f"%{_escape_like(term)}%"
    return and_(
        Message.room_id == room_id,
        Message.is_deleted == False,  # noqa: E712
        Message.content.is_not(None),
        Message.content.ilike(pattern, escape="\\")
    )


async def search_messages(
    db: AsyncSession,
    room_id: str,
    term: str,
    limit: int = 20,
    skip: int = 0
) -> List[Message]:
    """메시지 내용 검색 (대소문자 무시 부분 일치, 최신순)"""
    term = Validator.validate_search_query(term)
    result = await db.execute(
        select(Message)
        .where(_search_conditions(room_id, term))
        .order_by(Message.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_search_results(db: AsyncSession, room_id: str, term: str) -> int:
    """검색 결과 개수"""
    term = Validator.validate_search_query(term)
    result = await db.execute(
        select(func.count(Message.id)).where(_search_conditions(room_id, term))
    )
    return result.scalar() or 0


async def list_files(
    db: AsyncSession,
    room_id: str,
    limit: int = 20,
    skip: int = 0
) -> List[Message]:
    """채팅방 파일 메시지 목록 (최신순)"""
    result = await db.execute(
        select(Message)
        .where(
            and_(
                Message.room_id == room_id,
                Message.kind == "file",
                Message.is_deleted == False  # noqa: E712
            )
        )
        .order_by(Message.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def purge_deleted_messages(db: AsyncSession, retention_days: int) -> int:
    """보관 기간이 지난 소프트 삭제 메시지 영구 삭제"""
    cutoff_date = utc_now() - timedelta(days=retention_days)
    result = await db.execute(
        delete(Message)
        .where(
            and_(
                Message.is_deleted == True,  # noqa: E712
                Message.deleted_at < cutoff_date
            )
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    count = result.rowcount or 0
    if count:
        logger.info(f"Purged {count} deleted messages (>{retention_days}d)")
    return count
