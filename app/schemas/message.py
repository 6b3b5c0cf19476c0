from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class FileDescriptor(BaseModel):
    """저장된 파일 정보"""
    stored_name: str = Field(..., description="저장 파일명")
    original_name: str = Field(..., description="원본 파일명")
    path: str = Field(..., description="저장 경로")
    size: int = Field(..., ge=0, description="파일 크기 (bytes)")
    mime_type: str = Field(..., description="MIME 타입")


class MessageCreate(BaseModel):
    """메시지 생성 스키마"""
    kind: str = Field(default="text", description="메시지 타입: text, file")
    content: Optional[str] = Field(None, description="메시지 내용")
    file: Optional[FileDescriptor] = Field(None, description="파일 메시지의 파일 정보")


class MessageResponse(BaseModel):
    """메시지 응답 스키마"""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="메시지 ID")
    room_id: str = Field(..., description="채팅방 ID")
    sender_id: Optional[int] = Field(None, description="발신자 ID")
    sender_nickname: Optional[str] = Field(None, description="발신자 닉네임")
    kind: str = Field(..., description="메시지 타입")
    content: Optional[str] = Field(None, description="메시지 내용")
    file: Optional[FileDescriptor] = Field(None, description="파일 정보")
    is_deleted: bool = Field(default=False, description="삭제 여부")
    deleted_at: Optional[datetime] = Field(None, description="삭제일시")
    created_at: datetime = Field(..., description="생성일시")

    @classmethod
    def from_model(cls, message) -> "MessageResponse":
        """ORM Message -> 응답. 삭제된 메시지는 내용과 파일을 숨긴다"""
        file = None
        if message.kind == "file" and message.file_stored_name and not message.is_deleted:
            file = FileDescriptor(
                stored_name=message.file_stored_name,
                original_name=message.file_original_name or message.file_stored_name,
                path=message.file_path or "",
                size=message.file_size or 0,
                mime_type=message.file_mime_type or "application/octet-stream",
            )
        return cls(
            id=message.id,
            room_id=message.room_id,
            sender_id=message.sender_id,
            sender_nickname=message.sender_nickname,
            kind=message.kind,
            content=None if message.is_deleted else message.content,
            file=file,
            is_deleted=message.is_deleted,
            deleted_at=message.deleted_at,
            created_at=message.created_at,
        )


class MessageList(BaseModel):
    """메시지 목록 스키마"""
    messages: List[MessageResponse] = Field(..., description="메시지 목록")
    total: int = Field(..., description="전체 메시지 수")
    skip: int = Field(..., description="건너뛴 항목 수")
    limit: int = Field(..., description="페이지당 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")
