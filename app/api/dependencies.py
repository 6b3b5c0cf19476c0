"""
공용 FastAPI 의존성

- 참여자 세션: X-Session-Token 헤더
- 관리자: Bearer JWT (app.utils.auth.get_current_admin)
"""
from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotInRoomException, invalid_session_error
from app.database.mysql import get_async_session
from app.middleware.rate_limiting import get_client_ip
from app.models.participants import Participant
from app.services import participant_service

session_token_header = APIKeyHeader(name="X-Session-Token", auto_error=False)


async def get_current_participant(
    session_token: str = Security(session_token_header),
    db: AsyncSession = Depends(get_async_session)
) -> Participant:
    """세션 토큰으로 참여자 조회 (없거나 잘못되면 401)"""
    participant = await participant_service.find_by_session_token(db, session_token)
    if participant is None:
        raise invalid_session_error()
    return participant


def require_room_member(participant: Participant, room_id: str) -> None:
    """참여자가 해당 방에 바인딩되어 있는지 확인"""
    if not participant.is_online or participant.current_room_id != room_id:
        raise NotInRoomException(room_id)


def get_client_origin(request: Request) -> str:
    """요청의 origin 주소 (1기기 1참여 규칙용)"""
    return get_client_ip(request)
