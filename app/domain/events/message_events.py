"""
Message Context Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from .base import DomainEvent


@dataclass
class MessageSent(DomainEvent):
    """메시지 전송 이벤트"""
    message_id: int
    room_id: str
    sender_id: Optional[int]
    sender_nickname: Optional[str]
    kind: str  # "text", "file", "system"
    content: Optional[str]
    timestamp: datetime


@dataclass
class MessageDeleted(DomainEvent):
    """메시지 삭제 이벤트"""
    message_id: int
    room_id: str
    deleted_by: int
    timestamp: datetime
