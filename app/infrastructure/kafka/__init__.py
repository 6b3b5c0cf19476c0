"""
Kafka Infrastructure

Domain Event 발행용 Producer
"""

from .producer import DomainEventProducer, get_event_producer, publish_event

__all__ = [
    'DomainEventProducer',
    'get_event_producer',
    'publish_event',
]
