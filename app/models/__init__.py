from .rooms import Room
from .participants import Participant
from .messages import Message

__all__ = [
    "Room",
    "Participant",
    "Message",
]
