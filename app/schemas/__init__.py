# Room schemas
from .room import (
    RoomCreate,
    RoomUpdate,
    RoomPublic,
    RoomResponse,
    RoomList,
    RoomStats
)

# Participant schemas
from .participant import (
    JoinRequest,
    JoinResponse,
    ParticipantResponse,
    ParticipantList
)

# Message schemas
from .message import (
    FileDescriptor,
    MessageCreate,
    MessageResponse,
    MessageList
)

__all__ = [
    # Room
    "RoomCreate",
    "RoomUpdate",
    "RoomPublic",
    "RoomResponse",
    "RoomList",
    "RoomStats",

    # Participant
    "JoinRequest",
    "JoinResponse",
    "ParticipantResponse",
    "ParticipantList",

    # Message
    "FileDescriptor",
    "MessageCreate",
    "MessageResponse",
    "MessageList",
]
