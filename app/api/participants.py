from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_participant, get_client_origin
from app.core.logging import get_logger
from app.database.mysql import get_async_session
from app.middleware.rate_limiting import check_join_rate_limit
from app.models.participants import Participant
from app.schemas.participant import JoinRequest, JoinResponse, ParticipantResponse
from app.schemas.room import RoomPublic
from app.services import participant_service, room_service
from app.websockets.handlers import coordinator, message_handler

logger = get_logger(__name__)

router = APIRouter(tags=["Participants"])


@router.get("/rooms/pin/{pin}", response_model=RoomPublic)
async def get_room_by_pin(
    pin: str,
    db: AsyncSession = Depends(get_async_session)
) -> RoomPublic:
    """PIN으로 입장 전 채팅방 정보 조회 (만료된 방은 410)"""
    room = await room_service.find_by_pin(db, pin)
    online = await participant_service.count_online(db, room.id)
    return RoomPublic.model_validate(room).model_copy(update={"online_count": online})


@router.post("/participants/join", response_model=JoinResponse, status_code=status.HTTP_201_CREATED)
async def join_room(
    join_data: JoinRequest,
    request: Request,
    db: AsyncSession = Depends(get_async_session)
) -> JoinResponse:
    """
    PIN + 닉네임으로 채팅방 입장

    응답의 session_token을 X-Session-Token 헤더나 WebSocket attach 이벤트에 사용합니다.
    """
    origin = get_client_origin(request)
    await check_join_rate_limit(origin)

    result = await coordinator.join(
        db,
        join_data.pin,
        join_data.nickname,
        origin,
        user_agent=request.headers.get("user-agent")
    )
    participant = result.participant
    room = result.room

    await message_handler.notify_joined(room.id, participant)
    online = await participant_service.count_online(db, room.id)

    return JoinResponse(
        participant=ParticipantResponse.model_validate(participant),
        session_token=participant.session_token,
        room=RoomPublic.model_validate(room).model_copy(update={"online_count": online})
    )


@router.post("/participants/leave")
async def leave_room(
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
):
    """채팅방 퇴장 (멱등)"""
    event = await coordinator.leave(db, participant.id, reason="leave")
    if event is not None:
        await message_handler.notify_left([event])
    return {"room_id": event.room_id if event else None}


@router.post("/participants/heartbeat")
async def heartbeat(
    participant: Participant = Depends(get_current_participant),
    db: AsyncSession = Depends(get_async_session)
):
    """마지막 활동 시각 갱신"""
    await participant_service.touch(db, participant.id)
    return {"status": "ok", "room_id": participant.current_room_id}


@router.get("/participants/me", response_model=ParticipantResponse)
async def get_me(
    participant: Participant = Depends(get_current_participant)
) -> ParticipantResponse:
    """현재 세션의 참여자 정보"""
    return ParticipantResponse.model_validate(participant)
