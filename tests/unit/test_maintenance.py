from datetime import timedelta

import pytest
from sqlalchemy import update

from app.models.messages import Message
from app.models.participants import Participant
from app.models.rooms import Room
from app.services import message_service, participant_service, room_service
from app.services.maintenance import MaintenanceWorker
from app.utils.time_utils import utc_now


async def _join(gateway, room, nickname, origin):
    cid, ws, client = await gateway.connect(origin=origin)
    await gateway.send(cid, client, {"type": "join_room", "pin": room.pin, "nickname": nickname})
    return cid, ws, client


@pytest.fixture
def worker(gateway, session_factory):
    return MaintenanceWorker(session_factory=session_factory, handler=gateway.handler, interval_seconds=1)


class TestMaintenanceWorker:
    """주기적 정리 작업 테스트"""

    @pytest.mark.asyncio
    async def test_expired_room_closed_and_members_notified(self, worker, gateway, test_session, test_room):
        a_cid, ws_a, _ = await _join(gateway, test_room, "alice", "10.0.0.1")
        await test_session.execute(
            update(Room).where(Room.id == test_room.id).values(expires_at=utc_now() - timedelta(minutes=1))
        )
        await test_session.commit()

        summary = await worker.run_once()
        await gateway.connections.wait_idle()

        assert summary["expired_rooms"] == 1
        closed = ws_a.of_type("room_closed")
        assert closed[0]["reason"] == "expired"
        assert gateway.connections.get_binding(a_cid) is None

        room = await room_service.find_by_id(test_session, test_room.id)
        await test_session.refresh(room)
        assert room.is_active is False
        assert await participant_service.count_online(test_session, test_room.id) == 0

    @pytest.mark.asyncio
    async def test_inactive_participants_expired(self, worker, gateway, test_session, test_room):
        a_cid, ws_a, _ = await _join(gateway, test_room, "alice", "10.0.0.1")
        _, ws_b, _ = await _join(gateway, test_room, "bob", "10.0.0.2")
        alice_id = gateway.connections.get_binding(a_cid).participant_id
        await test_session.execute(
            update(Participant)
            .where(Participant.id == alice_id)
            .values(last_activity=utc_now() - timedelta(hours=2))
        )
        await test_session.commit()

        summary = await worker.run_once()
        await gateway.connections.wait_idle()

        assert summary["inactive_participants"] == 1
        assert ws_a.of_type("left_room")[0]["reason"] == "inactive"
        assert ws_b.of_type("user_left")[0]["participant"]["id"] == alice_id

    @pytest.mark.asyncio
    async def test_purges_old_deleted_messages(self, worker, test_session, test_room):
        alice = await participant_service.reserve_slot(test_session, test_room.id, "alice", "10.0.0.1")
        message = await message_service.send_message(test_session, alice.id, test_room.id, "text", "bye")
        await message_service.soft_delete_message(test_session, message.id, alice.id)
        await test_session.execute(
            update(Message)
            .where(Message.id == message.id)
            .values(deleted_at=utc_now() - timedelta(days=60))
        )
        await test_session.commit()

        summary = await worker.run_once()

        assert summary["purged_messages"] == 1
        assert await message_service.count_messages(test_session, test_room.id, include_deleted=True) == 0

    @pytest.mark.asyncio
    async def test_quiet_run(self, worker, test_room):
        summary = await worker.run_once()
        assert summary == {
            "expired_rooms": 0,
            "inactive_participants": 0,
            "purged_participants": 0,
            "purged_messages": 0
        }

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_others(self, worker, test_session, test_room, monkeypatch):
        async def broken(db):
            raise RuntimeError("boom")

        monkeypatch.setattr(room_service, "find_expired_rooms", broken)
        alice = await participant_service.reserve_slot(test_session, test_room.id, "alice", "10.0.0.1")
        await test_session.execute(
            update(Participant)
            .where(Participant.id == alice.id)
            .values(last_activity=utc_now() - timedelta(hours=2))
        )
        await test_session.commit()

        summary = await worker.run_once()

        assert summary["expired_rooms"] == 0
        assert summary["inactive_participants"] == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, worker):
        await worker.start()
        assert worker.running is True
        await worker.stop()
        assert worker.running is False
        assert worker.task is None
