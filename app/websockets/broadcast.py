"""
Message broadcast engine.

방별 writer 락 안에서 메시지를 저장하고, 같은 락 안에서 그 순간 방에 바인딩된
모든 연결(발신자 포함)의 outbox에 new_message를 넣는다. 저장 순서와 전달 순서가 같다.
"""

import asyncio
from collections import defaultdict
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.messages import Message
from app.schemas.events import new_message_event, message_deleted_event
from app.schemas.message import FileDescriptor
from app.services import message_service
from app.websockets.connection_manager import ConnectionManager

logger = get_logger(__name__)


class BroadcastEngine:
    """방 단위 단일 writer 메시지 fan-out"""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections
        self._room_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def room_lock(self, room_id: str) -> asyncio.Lock:
        return self._room_locks[room_id]

    async def send(
        self,
        db: AsyncSession,
        sender_id: int,
        room_id: str,
        kind: str = "text",
        content: Optional[str] = None,
        file: Optional[FileDescriptor] = None
    ) -> Message:
        """
        메시지 저장 후 방 전체에 전달

        검증 실패 시 예외가 그대로 전파되며 아무것도 저장/전송되지 않는다.
        """
        async with self.room_lock(room_id):
            message = await message_service.send_message(db, sender_id, room_id, kind, content, file)
            delivered = await self.connections.broadcast_to_room(room_id, new_message_event(message))

        logger.debug(f"Message {message.id} fanned out to {delivered} connections in room {room_id}")
        return message

    async def publish_system(self, db: AsyncSession, room_id: str, content: str) -> Message:
        """시스템 메시지 저장 후 전달"""
        async with self.room_lock(room_id):
            message = await message_service.create_system_message(db, room_id, content)
            await self.connections.broadcast_to_room(room_id, new_message_event(message))
        return message

    async def delete(self, db: AsyncSession, message_id: int, requester_id: int) -> Message:
        """소프트 삭제 후 message_deleted 전달 (이미 삭제된 경우 전달 생략)"""
        message, deleted = await message_service.soft_delete_message(db, message_id, requester_id)
        if deleted:
            async with self.room_lock(message.room_id):
                await self.connections.broadcast_to_room(
                    message.room_id,
                    message_deleted_event(message.room_id, message.id)
                )
        return message

    def discard_room(self, room_id: str):
        lock = self._room_locks.get(room_id)
        if lock is not None and not lock.locked():
            self._room_locks.pop(room_id, None)
