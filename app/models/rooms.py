import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, BigInteger
from app.database.mysql import Base
from app.utils.time_utils import utc_now


def _new_room_id() -> str:
    return str(uuid.uuid4())


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=_new_room_id)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    pin = Column(String(10), nullable=False, index=True)
    # 활성 상태일 때만 pin과 같은 값, 비활성화 시 NULL (활성 방 사이의 PIN 유일성)
    active_pin = Column(String(10), nullable=True, unique=True)
    kind = Column(String(20), nullable=False, default="text")  # text, multimedia
    max_participants = Column(Integer, nullable=False, default=50)
    max_file_size = Column(BigInteger, nullable=False, default=10 * 1024 * 1024)
    allowed_file_types = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def is_expired(self, now=None) -> bool:
        """만료 시각이 지났는지 여부"""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())

    def __repr__(self):
        return f"<Room(id={self.id}, name={self.name}, pin={self.pin}, is_active={self.is_active})>"
