"""
Kafka Producer

방/참여자/메시지 Domain Event를 Kafka로 발행합니다.
발행은 best effort: Kafka가 꺼져 있거나 실패해도 채팅 흐름은 계속됩니다.
"""

import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from app.core.config import settings
from app.domain.events.base import DomainEvent
from app.domain.events.message_events import MessageSent, MessageDeleted

logger = logging.getLogger(__name__)


def topic_for(event: DomainEvent) -> str:
    """메시지 이벤트와 방 이벤트는 토픽을 나눈다"""
    if isinstance(event, (MessageSent, MessageDeleted)):
        return settings.kafka_topic_message_events
    return settings.kafka_topic_room_events


def _serialize(value: dict) -> bytes:
    return json.dumps(value, ensure_ascii=False).encode("utf-8")


class DomainEventProducer:
    """AIOKafkaProducer 래퍼"""

    def __init__(self, bootstrap_servers: Optional[str] = None):
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self.producer: Optional[AIOKafkaProducer] = None

    @property
    def started(self) -> bool:
        return self.producer is not None

    async def start(self) -> bool:
        """
        Producer 시작

        브로커에 연결하지 못하면 경고만 남기고 이벤트 발행 없이 계속 동작합니다.
        """
        if self.producer is not None:
            return True

        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers.split(","),
            value_serializer=_serialize,
            key_serializer=lambda key: key.encode("utf-8") if key else None,
            acks=settings.kafka_producer_acks,
            request_timeout_ms=settings.kafka_request_timeout_ms
        )
        try:
            await producer.start()
        except KafkaError as e:
            logger.warning(f"Kafka unavailable at {self.bootstrap_servers}, events will not be published: {e}")
            await producer.stop()
            return False

        self.producer = producer
        logger.info(f"Kafka producer connected to {self.bootstrap_servers}")
        return True

    async def stop(self):
        if self.producer is not None:
            await self.producer.stop()
            self.producer = None
            logger.info("Kafka producer stopped")

    async def publish(self, event: DomainEvent):
        """이벤트 1건 발행 (room_id 파티션 키)"""
        if self.producer is None:
            raise RuntimeError("Producer not started")

        topic = topic_for(event)
        metadata = await self.producer.send_and_wait(topic, value=event.to_dict(), key=event.partition_key)
        logger.debug(
            f"Published {event.event_type} to {topic}[{metadata.partition}]@{metadata.offset}",
            extra={"room_id": event.partition_key}
        )


_event_producer: Optional[DomainEventProducer] = None


def get_event_producer() -> DomainEventProducer:
    """프로세스 전역 Producer"""
    global _event_producer
    if _event_producer is None:
        _event_producer = DomainEventProducer()
    return _event_producer


async def publish_event(event: DomainEvent) -> bool:
    """
    Best-effort 이벤트 발행

    kafka_enabled가 꺼져 있거나 Producer가 시작되지 않았으면 아무것도 하지 않습니다.
    발행 실패는 로그만 남기고 False를 반환합니다.
    """
    if not settings.kafka_enabled:
        return False

    producer = get_event_producer()
    if not producer.started:
        return False

    try:
        await producer.publish(event)
        return True
    except KafkaError as e:
        logger.warning(
            f"Failed to publish {event.event_type}: {e}",
            extra={"room_id": event.partition_key}
        )
        return False
