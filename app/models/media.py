"""Модель медиа-файла поста."""
from sqlalchemy import Column, BigInteger, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from config.database import Base
from app.models.types import BigIntPK


class Media(Base):
    """Скачанный медиа-файл, привязанный к посту."""

    __tablename__ = "media"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    post_id = Column(BigInteger, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(16), nullable=False)  # photo, video, animation, document, audio, voice
    file_path = Column(String, nullable=False)  # относительно media_storage_path
    file_name = Column(String, nullable=True)
    mime_type = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    post = relationship("Post", back_populates="media_files")
