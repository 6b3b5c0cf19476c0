from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_participant, require_room_member
from app.core.logging import get_logger
from app.core.validators import Validator
from app.database.mysql import get_async_session
from app.models.participants import Participant
from app.schemas.message import MessageCreate, MessageResponse, MessageList
from app.services import file_service, message_service, room_service
from app.websockets.handlers import broadcast_engine

logger = get_logger(__name__)

router = APIRouter(tags=["Messages"])


@router.post("/rooms/{room_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: str,
    message_data: MessageCreate,
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """
    메시지 전송

    저장 후 방에 연결된 모든 WebSocket(발신자 포함)에 new_message로 전달됩니다.
    """
    message = await broadcast_engine.send(
        db,
        participant.id,
        room_id,
        kind=message_data.kind,
        content=message_data.content,
        file=message_data.file
    )
    return MessageResponse.from_model(message)


@router.get("/rooms/{room_id}/messages", response_model=MessageList)
async def get_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=100, description="조회할 메시지 수"),
    skip: int = Query(0, ge=0, description="건너뛸 메시지 수"),
    after_id: Optional[int] = Query(None, ge=0, description="이 ID 이후 메시지만 (폴링)"),
    include_deleted: bool = Query(False, description="삭제된 메시지 포함 여부"),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageList:
    """
    채팅방 메시지 히스토리 (오래된 것부터)

    실시간 전달은 재전송되지 않으므로 재연결한 클라이언트는 이 API로 백필합니다.
    """
    require_room_member(participant, room_id)
    limit, skip = Validator.validate_pagination(limit, skip)

    messages = await message_service.list_messages(
        db, room_id, limit=limit, skip=skip, after_id=after_id, include_deleted=include_deleted
    )
    total = await message_service.count_messages(db, room_id, include_deleted=include_deleted)

    return MessageList(
        messages=[MessageResponse.from_model(m) for m in messages],
        total=total,
        skip=skip,
        limit=limit,
        has_next=after_id is None and skip + len(messages) < total
    )


@router.get("/rooms/{room_id}/messages/search", response_model=MessageList)
async def search_messages(
    room_id: str,
    q: str = Query(..., min_length=1, description="검색어"),
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageList:
    """메시지 내용 검색 (대소문자 무시, 최신순)"""
    require_room_member(participant, room_id)

    messages = await message_service.search_messages(db, room_id, q, limit=limit, skip=skip)
    total = await message_service.count_search_results(db, room_id, q)

    return MessageList(
        messages=[MessageResponse.from_model(m) for m in messages],
        total=total,
        skip=skip,
        limit=limit,
        has_next=skip + len(messages) < total
    )


@router.get("/rooms/{room_id}/files", response_model=MessageList)
async def list_files(
    room_id: str,
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageList:
    """채팅방에 공유된 파일 메시지 목록"""
    require_room_member(participant, room_id)

    messages = await message_service.list_files(db, room_id, limit=limit, skip=skip)
    return MessageList(
        messages=[MessageResponse.from_model(m) for m in messages],
        total=len(messages),
        skip=skip,
        limit=limit,
        has_next=len(messages) == limit
    )


@router.post("/rooms/{room_id}/files", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    room_id: str,
    file: UploadFile = File(...),
    content: Optional[str] = Form(None),
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """
    파일 업로드 후 파일 메시지 전송

    방 정책(종류, 크기, MIME 타입)은 디스크에 쓰기 전에 검사합니다.
    메시지 저장이 실패하면 저장한 파일을 지웁니다.
    """
    require_room_member(participant, room_id)
    room = await room_service.get_room(db, room_id)

    descriptor = await file_service.store_room_file(room, file, participant.id)
    try:
        message = await broadcast_engine.send(
            db,
            participant.id,
            room_id,
            kind="file",
            content=content,
            file=descriptor
        )
    except Exception:
        await file_service.delete_stored_file(descriptor, participant.id)
        raise

    return MessageResponse.from_model(message)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: int,
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """메시지 소프트 삭제 (발신자 본인만, 멱등)"""
    message = await broadcast_engine.delete(db, message_id, participant.id)
    return MessageResponse.from_model(message)
