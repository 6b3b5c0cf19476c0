import asyncio
from contextlib import asynccontextmanager

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.database.mysql import Base, get_async_session
from app.main import app
from app.utils.auth import create_access_token


@asynccontextmanager
async def _no_lifespan(app):
    yield


@pytest.fixture
def live_client(tmp_path, monkeypatch):
    """
    실제 WebSocket 연결을 쓰는 TestClient

    외부 저장소(MySQL, Redis, Kafka)를 여는 lifespan 대신 SQLite 엔진을 연결한다.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'flow.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30}
    )

    async def create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def get_test_session():
        async with factory() as session:
            yield session

    monkeypatch.setattr(app.router, "lifespan_context", _no_lifespan)
    monkeypatch.setattr(app.state, "session_factory", factory, raising=False)
    monkeypatch.setattr(app.state, "db_engine", engine, raising=False)
    app.dependency_overrides[get_async_session] = get_test_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def _receive_until(ws, event_type: str, limit: int = 10):
    """원하는 타입이 나올 때까지 수신 (중간 이벤트 반환)"""
    seen = []
    for _ in range(limit):
        payload = ws.receive_json()
        seen.append(payload)
        if payload["type"] == event_type:
            return payload, seen
    raise AssertionError(f"{event_type} not received, got {[p['type'] for p in seen]}")


class TestFullChatFlow:
    """PIN 채팅 전체 플로우 통합 테스트"""

    def test_complete_chat_flow(self, live_client):
        """
        1. 관리자가 채팅방 생성
        2. 두 참여자가 WebSocket으로 PIN 입장
        3. 메시지가 발신자 포함 방 전체에 전달
        4. 한 명 퇴장 후 관리자가 방 종료
        """
        admin_headers = {"Authorization": f"Bearer {create_access_token(data={'sub': 'instructor-1'})}"}

        # 1. 채팅방 생성
        response = live_client.post(
            "/rooms",
            json={"name": "Physics 101", "max_participants": 30},
            headers=admin_headers
        )
        assert response.status_code == status.HTTP_201_CREATED
        room = response.json()
        pin = room["pin"]

        preview = live_client.get(f"/rooms/pin/{pin}")
        assert preview.status_code == status.HTTP_200_OK
        assert preview.json()["online_count"] == 0

        with live_client.websocket_connect("/ws", headers={"X-Forwarded-For": "10.1.0.1"}) as ws_a, \
                live_client.websocket_connect("/ws", headers={"X-Forwarded-For": "10.1.0.2"}) as ws_b:

            # 2. 입장
            ws_a.send_json({"type": "join_room", "pin": pin, "nickname": "alice"})
            joined_a = ws_a.receive_json()
            assert joined_a["type"] == "room_joined"
            assert joined_a["room"]["id"] == room["id"]
            assert [p["nickname"] for p in joined_a["participants"]] == ["alice"]

            ws_b.send_json({"type": "join_room", "pin": pin, "nickname": "bob"})
            joined_b = ws_b.receive_json()
            assert joined_b["type"] == "room_joined"
            assert joined_b["room"]["online_count"] == 2

            notice = ws_a.receive_json()
            assert notice["type"] == "user_joined"
            assert notice["participant"]["nickname"] == "bob"

            # 같은 닉네임은 요청한 연결에만 거절
            with live_client.websocket_connect("/ws", headers={"X-Forwarded-For": "10.1.0.3"}) as ws_c:
                ws_c.send_json({"type": "join_room", "pin": pin, "nickname": "alice"})
                rejected = ws_c.receive_json()
                assert rejected["type"] == "error"
                assert rejected["error"] == "nickname_taken"

            # 3. 메시지 fan-out (발신자 포함)
            ws_a.send_json({"type": "send_message", "content": "Hello class"})
            echo, _ = _receive_until(ws_a, "new_message")
            delivered, _ = _receive_until(ws_b, "new_message")
            assert echo["message"]["id"] == delivered["message"]["id"]
            assert delivered["message"]["sender_nickname"] == "alice"
            assert delivered["message"]["content"] == "Hello class"

            history = live_client.get(
                f"/rooms/{room['id']}/messages",
                headers={"X-Session-Token": joined_b["session_token"]}
            )
            assert history.status_code == status.HTTP_200_OK
            assert [m["content"] for m in history.json()["messages"]] == ["Hello class"]

            # 4. 퇴장
            ws_b.send_json({"type": "leave_room"})
            left, _ = _receive_until(ws_b, "left_room")
            assert left["room_id"] == room["id"]

            gone, _ = _receive_until(ws_a, "user_left")
            assert gone["participant"]["nickname"] == "bob"
            assert gone["reason"] == "leave"

            # 방 종료
            closed = live_client.post(f"/rooms/{room['id']}/deactivate", headers=admin_headers)
            assert closed.status_code == status.HTTP_200_OK

            notice, _ = _receive_until(ws_a, "room_closed")
            assert notice["room_id"] == room["id"]
            assert notice["reason"] == "closed"

            # 바인딩이 해제되어 더 이상 전송할 수 없다
            ws_a.send_json({"type": "send_message", "content": "anyone?"})
            error, _ = _receive_until(ws_a, "error")
            assert error["error"] == "not_in_room"

        assert live_client.get(f"/rooms/pin/{pin}").status_code == status.HTTP_404_NOT_FOUND

    def test_http_join_then_attach(self, live_client):
        """HTTP로 입장한 뒤 WebSocket에 세션을 붙인다"""
        admin_headers = {"Authorization": f"Bearer {create_access_token(data={'sub': 'instructor-1'})}"}
        room = live_client.post("/rooms", json={"name": "Chemistry"}, headers=admin_headers).json()

        joined = live_client.post(
            "/participants/join",
            json={"pin": room["pin"], "nickname": "carol"},
            headers={"X-Forwarded-For": "10.2.0.1"}
        )
        assert joined.status_code == status.HTTP_201_CREATED
        token = joined.json()["session_token"]

        with live_client.websocket_connect("/ws", headers={"X-Forwarded-For": "10.2.0.1"}) as ws:
            ws.send_json({"type": "attach", "session_token": token})
            attached = ws.receive_json()
            assert attached["type"] == "room_joined"
            assert attached["participant"]["nickname"] == "carol"

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            sent = live_client.post(
                f"/rooms/{room['id']}/messages",
                json={"content": "from http"},
                headers={"X-Session-Token": token}
            )
            assert sent.status_code == status.HTTP_201_CREATED

            pushed, _ = _receive_until(ws, "new_message")
            assert pushed["message"]["content"] == "from http"

            ws.send_json({"type": "leave_room"})
            _receive_until(ws, "left_room")

            me = live_client.get("/participants/me", headers={"X-Session-Token": token})
            assert me.json()["is_online"] is False
