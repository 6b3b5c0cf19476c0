from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiokafka.errors import KafkaTimeoutError

from app.core.config import settings
from app.domain.events import MessageSent, ParticipantLeft, RoomDeactivated
from app.infrastructure.kafka import producer as producer_module
from app.infrastructure.kafka.producer import DomainEventProducer, publish_event, topic_for


def _left_event():
    return ParticipantLeft(
        room_id="room-1",
        participant_id=7,
        nickname="alex",
        reason="disconnect",
        timestamp=datetime(2024, 5, 1, 12, 30)
    )


class TestDomainEvents:
    """Domain Event 직렬화"""

    def test_to_dict(self):
        data = _left_event().to_dict()

        assert data["event_type"] == "ParticipantLeft"
        assert data["timestamp"] == "2024-05-01T12:30:00Z"
        assert data["reason"] == "disconnect"

    def test_partition_key_is_room(self):
        assert _left_event().partition_key == "room-1"

    def test_topics(self):
        message = MessageSent(
            message_id=1, room_id="room-1", sender_id=7, sender_nickname="alex",
            kind="text", content="hi", timestamp=datetime(2024, 5, 1)
        )
        closed = RoomDeactivated(room_id="room-1", reason="closed", evicted_count=0, timestamp=datetime(2024, 5, 1))

        assert topic_for(message) == settings.kafka_topic_message_events
        assert topic_for(closed) == settings.kafka_topic_room_events


class TestPublishEvent:
    """Best-effort 발행"""

    @pytest.fixture
    def fake_producer(self, monkeypatch):
        producer = DomainEventProducer("kafka:9092")
        producer.producer = SimpleNamespace(
            send_and_wait=AsyncMock(return_value=SimpleNamespace(partition=0, offset=3))
        )
        monkeypatch.setattr(producer_module, "_event_producer", producer)
        monkeypatch.setattr(settings, "kafka_enabled", True)
        return producer

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self):
        assert await publish_event(_left_event()) is False

    @pytest.mark.asyncio
    async def test_published_with_room_key(self, fake_producer):
        assert await publish_event(_left_event()) is True

        call = fake_producer.producer.send_and_wait.await_args
        assert call.args[0] == settings.kafka_topic_room_events
        assert call.kwargs["key"] == "room-1"
        assert call.kwargs["value"]["participant_id"] == 7

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, fake_producer):
        fake_producer.producer.send_and_wait.side_effect = KafkaTimeoutError()

        assert await publish_event(_left_event()) is False

    @pytest.mark.asyncio
    async def test_not_started(self, monkeypatch):
        monkeypatch.setattr(settings, "kafka_enabled", True)
        monkeypatch.setattr(producer_module, "_event_producer", DomainEventProducer("kafka:9092"))

        assert await publish_event(_left_event()) is False
