"""Модели базы данных."""
from app.models.channel import Channel
from app.models.post import Post
from app.models.media import Media

__all__ = [
    "Channel",
    "Post",
    "Media",
]
