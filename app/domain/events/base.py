"""
Domain Event Base Class

방 단위로 발생하는 이벤트의 공통 직렬화. Kafka 메시지 키는 room_id라서
한 방의 이벤트는 같은 파티션에서 발생 순서대로 소비된다.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict

from app.utils.time_utils import isoformat


@dataclass
class DomainEvent:
    """Domain Event 기본 클래스 (하위 클래스는 room_id, timestamp 필드를 가진다)"""

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def partition_key(self) -> str:
        return str(getattr(self, "room_id", ""))

    def to_dict(self) -> Dict[str, Any]:
        """Kafka 페이로드. datetime 필드는 ISO 문자열로 바꾼다"""
        data = {
            key: isoformat(value) if isinstance(value, datetime) else value
            for key, value in asdict(self).items()
        }
        data["event_type"] = self.event_type
        return data
