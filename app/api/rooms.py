from fastapi import APIRouter, Depends, Query, status, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.mysql import get_async_session
from app.schemas.participant import ParticipantList, ParticipantResponse
from app.schemas.room import RoomCreate, RoomUpdate, RoomResponse, RoomList, RoomStats
from app.core.validators import Validator
from app.services import room_service, participant_service
from app.utils.auth import get_current_admin
from app.websockets.handlers import coordinator, message_handler

router = APIRouter(prefix="/rooms", tags=["Rooms"])


async def _room_response(db: AsyncSession, room) -> RoomResponse:
    online = await participant_service.count_online(db, room.id)
    return RoomResponse.model_validate(room).model_copy(update={"online_count": online})


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    room_data: RoomCreate,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomResponse:
    """
    PIN 채팅방 생성

    - **name**: 채팅방 이름 (3-100자)
    - **kind**: text 또는 multimedia
    - **max_participants**: 최대 참여자 수 (1-1000, 기본 50)
    - **allowed_file_types**: 허용 MIME 타입 목록

    활성 채팅방 사이에서 유일한 6자리 PIN이 발급됩니다.
    """
    room = await room_service.create_room(db, admin_id, room_data)
    return await _room_response(db, room)


@router.get("", response_model=RoomList)
async def list_rooms(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    include_inactive: bool = Query(False),
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomList:
    """관리자의 채팅방 목록"""
    limit, skip = Validator.validate_pagination(limit, skip)
    rooms, total = await room_service.list_owner_rooms(db, admin_id, skip, limit, include_inactive)
    return RoomList(
        rooms=[await _room_response(db, room) for room in rooms],
        total=total,
        skip=skip,
        limit=limit
    )


@router.get("/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: str,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomResponse:
    """채팅방 상세"""
    room = await room_service.get_room_for_owner(db, room_id, admin_id)
    return await _room_response(db, room)


@router.get("/{room_id}/stats", response_model=RoomStats)
async def get_room_stats(
    room_id: str,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomStats:
    """채팅방 통계"""
    await room_service.get_room_for_owner(db, room_id, admin_id)
    return RoomStats(**await room_service.get_room_stats(db, room_id))


@router.patch("/{room_id}", response_model=RoomResponse)
async def update_room(
    room_id: str,
    room_data: RoomUpdate,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomResponse:
    """채팅방 수정 (정원 축소 시 최근 입장자부터 퇴장)"""
    room, evicted = await room_service.update_room(db, room_id, admin_id, room_data, coordinator)
    if evicted:
        await message_handler.notify_left(evicted)
    return await _room_response(db, room)


@router.post("/{room_id}/deactivate", response_model=RoomResponse)
async def deactivate_room(
    room_id: str,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> RoomResponse:
    """채팅방 비활성화 (모든 참여자 강제 퇴장)"""
    room, evicted = await room_service.deactivate_room(db, room_id, admin_id, coordinator)
    await message_handler.notify_room_closed(room.id, evicted, reason="closed")
    return await _room_response(db, room)


@router.delete("/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: str,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
):
    """채팅방 영구 삭제 (메시지 포함)"""
    evicted = await room_service.delete_room(db, room_id, admin_id, coordinator)
    await message_handler.notify_room_closed(room_id, evicted, reason="deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}/participants", response_model=ParticipantList)
async def list_room_participants(
    room_id: str,
    admin_id: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_session)
) -> ParticipantList:
    """채팅방 온라인 참여자 목록"""
    await room_service.get_room_for_owner(db, room_id, admin_id)
    participants = await participant_service.list_room_participants(db, room_id)
    return ParticipantList(
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        total=len(participants)
    )
