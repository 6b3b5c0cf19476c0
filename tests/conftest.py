import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Any, Dict, List

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.database.mysql import Base, get_async_session
from app.main import app
from app.schemas.room import RoomCreate
from app.services import room_service
from app.services.presence_service import PresenceCoordinator
from app.utils.auth import create_access_token
from app.websockets.broadcast import BroadcastEngine
from app.websockets.connection_manager import ConnectionManager, manager
from app.websockets.handlers import WebSocketMessageHandler, ClientInfo

from app.models import Room, Participant, Message  # noqa: F401


ADMIN_ID = "admin-1"
OTHER_ADMIN_ID = "admin-2"


def _database_url(tmp_path) -> str:
    # 동시 세션이 실제로 서로 다른 커넥션을 쓰도록 파일 기반 SQLite 사용
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


def _make_engine(tmp_path):
    return create_async_engine(
        _database_url(tmp_path),
        poolclass=NullPool,
        connect_args={"timeout": 30},
        echo=False
    )


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """테스트용 비동기 데이터베이스 엔진 생성"""
    engine = _make_engine(tmp_path)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    """이벤트/요청마다 새 세션을 여는 팩토리"""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """테스트용 데이터베이스 세션"""
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_global_state(tmp_path, monkeypatch):
    """전역 연결 매니저와 업로드 디렉토리를 테스트마다 초기화"""
    manager.__init__()
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "rate_limit_enabled", False)
    monkeypatch.setattr(settings, "kafka_enabled", False)
    yield
    manager.__init__()


@pytest_asyncio.fixture
async def client(session_factory, test_engine) -> AsyncGenerator[AsyncClient, None]:
    """테스트용 비동기 HTTP 클라이언트"""
    async def get_test_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = get_test_session
    original_factory = app.state.session_factory
    original_engine = app.state.db_engine
    app.state.session_factory = session_factory
    app.state.db_engine = test_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.session_factory = original_factory
    app.state.db_engine = original_engine


@pytest.fixture
def admin_token() -> str:
    """관리자 토큰"""
    return create_access_token(data={"sub": ADMIN_ID})


@pytest.fixture
def admin_headers(admin_token) -> Dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def other_admin_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': OTHER_ADMIN_ID})}"}


async def make_room(db: AsyncSession, owner_id: str = ADMIN_ID, **overrides):
    """테스트용 채팅방 생성 헬퍼"""
    data = {"name": "Test Room", "kind": "text", "max_participants": 10}
    data.update(overrides)
    return await room_service.create_room(db, owner_id, RoomCreate(**data))


@pytest_asyncio.fixture
async def test_room(test_session):
    """텍스트 채팅방"""
    return await make_room(test_session)


@pytest_asyncio.fixture
async def media_room(test_session):
    """멀티미디어 채팅방 (1KB, 이미지/텍스트 허용)"""
    return await make_room(
        test_session,
        name="Media Room",
        kind="multimedia",
        max_file_size=1024,
        allowed_file_types=["image/png", "text/plain"]
    )


# =============================================================================
# Gateway fakes
# =============================================================================

class FakeWebSocket:
    """send_json/close만 흉내내는 WebSocket"""

    def __init__(self, fail_on_send: bool = False, block_sends: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.closed_code = None
        self.fail_on_send = fail_on_send
        self._gate = asyncio.Event()
        if not block_sends:
            self._gate.set()

    async def send_json(self, payload):
        await self._gate.wait()
        if self.fail_on_send:
            raise RuntimeError("socket is gone")
        self.sent.append(payload)

    async def close(self, code: int = 1000):
        self.closed_code = code

    def release(self):
        self._gate.set()

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [p for p in self.sent if p.get("type") == event_type]

    def types(self) -> List[str]:
        return [p.get("type") for p in self.sent]


class Gateway:
    """테스트마다 새로 만드는 게이트웨이 묶음"""

    def __init__(self, session_factory, outbox_size: int = 64):
        self.connections = ConnectionManager(outbox_size=outbox_size)
        self.coordinator = PresenceCoordinator(self.connections)
        self.engine = BroadcastEngine(self.connections)
        self.handler = WebSocketMessageHandler(self.connections, self.coordinator, self.engine)
        self.session_factory = session_factory

    async def connect(self, origin: str = "10.0.0.1", **kwargs):
        ws = FakeWebSocket(**kwargs)
        connection_id = await self.connections.register(ws)
        return connection_id, ws, ClientInfo(origin=origin, user_agent="pytest")

    async def send(self, connection_id: str, client: ClientInfo, data: Dict[str, Any]):
        await self.handler.handle_event(connection_id, data, self.session_factory, client)
        await self.connections.wait_idle()

    async def close(self):
        await self.connections.close_all()


@pytest_asyncio.fixture
async def gateway(session_factory):
    gw = Gateway(session_factory)
    yield gw
    await gw.close()
