from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from .room import RoomPublic


class JoinRequest(BaseModel):
    """PIN + 닉네임 입장 요청"""
    pin: str = Field(..., description="채팅방 PIN")
    nickname: str = Field(..., description="닉네임 (2-50자)")


class ParticipantResponse(BaseModel):
    """참여자 정보 (다른 참여자에게 노출 가능한 필드만)"""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="참여자 ID")
    nickname: str = Field(..., description="닉네임")
    current_room_id: Optional[str] = Field(None, description="현재 채팅방 ID")
    is_online: bool = Field(..., description="온라인 여부")
    joined_at: Optional[datetime] = Field(None, description="입장일시")
    last_activity: Optional[datetime] = Field(None, description="마지막 활동")


class JoinResponse(BaseModel):
    """입장 결과. session_token은 이 응답에서만 노출된다"""
    participant: ParticipantResponse
    session_token: str
    room: RoomPublic


class ParticipantList(BaseModel):
    """채팅방 참여자 목록"""
    participants: List[ParticipantResponse]
    total: int
