"""
Domain Events

모든 Domain Event의 기본 클래스 및 이벤트 정의
"""

from .base import DomainEvent
from .room_events import ParticipantJoined, ParticipantLeft, RoomDeactivated
from .message_events import MessageSent, MessageDeleted

__all__ = [
    'DomainEvent',
    'ParticipantJoined',
    'ParticipantLeft',
    'RoomDeactivated',
    'MessageSent',
    'MessageDeleted',
]
