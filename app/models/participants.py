import uuid
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from app.database.mysql import Base
from app.utils.time_utils import utc_now


def _new_session_token() -> str:
    return uuid.uuid4().hex


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        # current_room_id가 NULL이면 제약에 걸리지 않는다 (퇴장한 참여자는 제외)
        UniqueConstraint("nickname", "current_room_id", name="uq_participant_nickname_room"),
        UniqueConstraint("origin_slot", "current_room_id", name="uq_participant_origin_room"),
        Index("ix_participant_online_activity", "is_online", "last_activity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    nickname = Column(String(50), nullable=False)
    session_token = Column(String(64), nullable=False, unique=True, default=_new_session_token)
    origin_address = Column(String(64), nullable=False)
    # 1기기 1참여 규칙이 켜져 있을 때만 origin_address 복사본
    origin_slot = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    current_room_id = Column(String(36), ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True, index=True)
    is_online = Column(Boolean, nullable=False, default=True)
    last_activity = Column(DateTime, default=utc_now)
    joined_at = Column(DateTime, default=utc_now)

    def __repr__(self):
        return f"<Participant(id={self.id}, nickname={self.nickname}, room={self.current_room_id}, online={self.is_online})>"
