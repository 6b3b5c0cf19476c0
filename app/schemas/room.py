from datetime import datetime
from typing import Optional, List, Union
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.core.validators import split_file_types


class RoomCreate(BaseModel):
    """채팅방 생성 스키마 (관리자)"""
    name: str = Field(..., description="채팅방 이름 (3-100자)")
    description: Optional[str] = Field(None, max_length=500, description="채팅방 설명")
    kind: str = Field(default="text", description="채팅방 종류: text, multimedia")
    max_participants: Optional[int] = Field(None, description="최대 참여자 수 (1-1000)")
    max_file_size: Optional[int] = Field(None, gt=0, description="최대 파일 크기 (bytes)")
    allowed_file_types: Optional[Union[List[str], str]] = Field(None, description="허용 MIME 타입 목록")
    expires_at: Optional[datetime] = Field(None, description="만료 시각")


class RoomUpdate(BaseModel):
    """채팅방 수정 스키마 (전달된 필드만 반영)"""
    name: Optional[str] = Field(None, description="채팅방 이름")
    description: Optional[str] = Field(None, max_length=500, description="채팅방 설명")
    kind: Optional[str] = Field(None, description="채팅방 종류")
    max_participants: Optional[int] = Field(None, description="최대 참여자 수")
    max_file_size: Optional[int] = Field(None, gt=0, description="최대 파일 크기 (bytes)")
    allowed_file_types: Optional[Union[List[str], str]] = Field(None, description="허용 MIME 타입 목록")
    expires_at: Optional[datetime] = Field(None, description="만료 시각")


class RoomPublic(BaseModel):
    """PIN으로 조회하는 공개 채팅방 정보"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="채팅방 ID")
    name: str = Field(..., description="채팅방 이름")
    description: Optional[str] = Field(None, description="채팅방 설명")
    kind: str = Field(..., description="채팅방 종류")
    max_participants: int = Field(..., description="최대 참여자 수")
    max_file_size: int = Field(..., description="최대 파일 크기")
    allowed_file_types: List[str] = Field(default_factory=list, description="허용 MIME 타입")
    expires_at: Optional[datetime] = Field(None, description="만료 시각")
    online_count: int = Field(default=0, description="현재 접속 인원")

    @field_validator("allowed_file_types", mode="before")
    @classmethod
    def _split_types(cls, value):
        if isinstance(value, str) or value is None:
            return split_file_types(value)
        return value


class RoomResponse(RoomPublic):
    """관리자용 채팅방 응답 스키마"""
    pin: str = Field(..., description="입장 PIN")
    is_active: bool = Field(..., description="활성화 상태")
    owner_id: str = Field(..., description="관리자 ID")
    created_at: datetime = Field(..., description="생성일시")
    updated_at: Optional[datetime] = Field(None, description="수정일시")


class RoomList(BaseModel):
    """채팅방 목록 스키마"""
    rooms: List[RoomResponse] = Field(..., description="채팅방 목록")
    total: int = Field(..., description="전체 채팅방 수")
    skip: int = Field(..., description="건너뛴 항목 수")
    limit: int = Field(..., description="페이지당 항목 수")


class RoomStats(BaseModel):
    """채팅방 통계"""
    room_id: str
    online_participants: int
    total_participants: int
    message_count: int
    capacity_remaining: int
