"""
Room / Presence Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from .base import DomainEvent


@dataclass
class ParticipantJoined(DomainEvent):
    """참여자 입장 이벤트"""
    room_id: str
    participant_id: int
    nickname: str
    timestamp: datetime


@dataclass
class ParticipantLeft(DomainEvent):
    """
    참여자 퇴장 이벤트

    reason: leave(자발적), disconnect(연결 끊김), moved(다른 방으로 이동),
    inactive(비활성 만료), room_closed(방 비활성화), capacity_reduced(정원 축소)
    """
    room_id: str
    participant_id: int
    nickname: str
    reason: str
    timestamp: datetime


@dataclass
class RoomDeactivated(DomainEvent):
    """채팅방 비활성화 이벤트"""
    room_id: str
    reason: str  # closed, expired, deleted
    evicted_count: int
    timestamp: datetime
