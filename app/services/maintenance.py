"""
주기적 정리 작업

만료된 방 비활성화, 비활성 참여자 만료, 오래된 참여자와 삭제 메시지 영구 삭제를
maintenance_interval_seconds 간격으로 실행합니다.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.database.mysql import AsyncSessionLocal
from app.services import message_service, participant_service, room_service

logger = get_logger(__name__)


class MaintenanceWorker:
    """백그라운드 정리 작업 실행기"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        handler=None,
        interval_seconds: Optional[int] = None
    ):
        if handler is None:
            from app.websockets.handlers import message_handler as handler
        self.session_factory = session_factory or AsyncSessionLocal
        self.handler = handler
        self.interval_seconds = interval_seconds or settings.maintenance_interval_seconds
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """작업 루프 시작"""
        if self.running:
            logger.warning("Maintenance worker is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run_forever())
        logger.info(f"Maintenance worker started (interval={self.interval_seconds}s)")

    async def stop(self):
        """작업 루프 중지"""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Maintenance worker stopped")

    async def _run_forever(self):
        while self.running:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> Dict[str, Any]:
        """
        정리 작업 1회 실행

        각 단계는 독립적으로 실패할 수 있으며, 실패한 단계는 로그만 남기고 다음 단계로 넘어갑니다.

        Returns:
            단계별 처리 건수
        """
        summary = {
            "expired_rooms": 0,
            "inactive_participants": 0,
            "purged_participants": 0,
            "purged_messages": 0
        }

        try:
            summary["expired_rooms"] = await self.close_expired_rooms()
        except Exception:
            logger.exception("Failed to close expired rooms")

        try:
            summary["inactive_participants"] = await self.expire_inactive_participants()
        except Exception:
            logger.exception("Failed to expire inactive participants")

        try:
            async with self.session_factory() as db:
                summary["purged_participants"] = await participant_service.purge_stale(
                    db, settings.participant_purge_hours
                )
                summary["purged_messages"] = await message_service.purge_deleted_messages(
                    db, settings.message_retention_days
                )
        except Exception:
            logger.exception("Failed to purge stale records")

        if any(summary.values()):
            logger.info("Maintenance run finished", extra=summary)
        return summary

    async def close_expired_rooms(self) -> int:
        """만료된 방 비활성화 후 쫓겨난 연결에 room_closed 전달"""
        closed = 0
        async with self.session_factory() as db:
            rooms = await room_service.find_expired_rooms(db)
            room_ids = [room.id for room in rooms]

            for room_id in room_ids:
                room, evicted = await room_service.deactivate_room(
                    db, room_id, None, self.handler.coordinator, reason="expired"
                )
                await self.handler.notify_room_closed(room_id, evicted, reason="expired")
                closed += 1
        return closed

    async def expire_inactive_participants(self) -> int:
        """비활성 참여자 만료 후 연결 정리 및 user_left 전달"""
        async with self.session_factory() as db:
            events = await self.handler.coordinator.expire_inactive(db)
        if events:
            await self.handler.notify_left(events)
        return len(events)


# 싱글톤 인스턴스
_maintenance_worker = None


def get_maintenance_worker() -> MaintenanceWorker:
    """MaintenanceWorker 싱글톤 인스턴스 반환"""
    global _maintenance_worker
    if _maintenance_worker is None:
        _maintenance_worker = MaintenanceWorker()
    return _maintenance_worker
