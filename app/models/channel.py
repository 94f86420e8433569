"""Модель исходного канала."""
from sqlalchemy import Column, BigInteger, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from config.database import Base
from app.models.types import BigIntPK


class Channel(Base):
    """Исходный Telegram канал, который зеркалируется."""

    __tablename__ = "channels"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)  # без @, в нижнем регистре
    title = Column(String(255), nullable=True)
    active = Column(Boolean, default=True, nullable=False, index=True)
    target_channel_id = Column(String(64), nullable=True)  # переопределение канала публикации
    # Watermark: максимальный обработанный message_id, NULL = канал еще не синхронизирован
    last_checked_msg_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    posts = relationship("Post", back_populates="channel", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Channel id={self.id} @{self.username} watermark={self.last_checked_msg_id}>"
