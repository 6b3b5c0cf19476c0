from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, Boolean, ForeignKey, Index
from app.database.mysql import Base
from app.utils.time_utils import utc_now


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_room_id_id", "room_id", "id"),
    )

    # autoincrement id가 방 내부의 영속 순서
    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("participants.id", ondelete="SET NULL"), nullable=True, index=True)
    sender_nickname = Column(String(50), nullable=True)
    kind = Column(String(20), nullable=False, default="text")  # text, file, system
    content = Column(Text, nullable=True)

    # File descriptor
    file_stored_name = Column(String(255), nullable=True)
    file_original_name = Column(String(255), nullable=True)
    file_path = Column(String(512), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    file_mime_type = Column(String(100), nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    @property
    def has_file(self) -> bool:
        return self.kind == "file" and self.file_stored_name is not None

    def __repr__(self):
        return f"<Message(id={self.id}, room_id={self.room_id}, sender_id={self.sender_id}, kind={self.kind})>"
