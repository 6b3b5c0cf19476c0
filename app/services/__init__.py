"""
Services layer for data access and domain rules.

This layer handles:
- Room registry and PIN issuance
- Participant directory and presence coordination
- Message persistence, history and search
- File storage and background maintenance
"""

__all__ = [
    "room_service",
    "participant_service",
    "presence_service",
    "message_service",
    "file_service",
    "maintenance"
]
