"""Модель поста."""
from sqlalchemy import Column, BigInteger, Text, String, DateTime, Boolean, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import List
from config.database import Base
from app.models.types import BigIntPK
from app.utils.enums import PostStatus
from app.utils.text_formatter import EntityRange, coerce_entities


class Post(Base):
    """Пост из исходного канала в очереди модерации."""

    __tablename__ = "posts"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    channel_id = Column(BigInteger, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
    telegram_msg_id = Column(BigInteger, nullable=False)
    original_text = Column(Text, nullable=False)  # чистый текст, offset entities считаются по нему
    entities = Column(JSON, nullable=False, default=list)
    translated_text = Column(Text, nullable=True)  # Telegram HTML
    status = Column(String(16), default=PostStatus.PENDING.value, nullable=False, index=True)
    is_historical = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    published_at = Column(DateTime, nullable=True)

    # Unique constraint для идемпотентной вставки
    __table_args__ = (
        UniqueConstraint("channel_id", "telegram_msg_id", name="uq_channel_message"),
        Index("idx_posts_channel_created", "channel_id", "created_at"),
    )

    # Relationships
    channel = relationship("Channel", back_populates="posts")
    media_files = relationship(
        "Media", back_populates="post", cascade="all, delete-orphan", order_by="Media.id"
    )

    @property
    def entity_ranges(self) -> List[EntityRange]:
        return coerce_entities(self.entities)

    def __repr__(self) -> str:
        return f"<Post id={self.id} channel={self.channel_id} msg={self.telegram_msg_id} {self.status}>"
