"""
Хранилище каналов, постов и медиа.

Все операции открывают собственную сессию из ``session_maker`` и
возвращают отсоединенные объекты (``expire_on_commit=False``).
"""
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.models import Channel, Post, Media
from app.utils.enums import PostStatus
from app.utils.exceptions import PostNotFoundError, ChannelNotFoundError
from app.utils.logger import get_logger
from app.utils.text_formatter import EntityRange
from app.utils.validators import normalize_username
from config.database import async_session_maker

logger = get_logger(__name__)


class Repository:
    """Операции над хранилищем, которые нужны синхронизации и публикации."""

    def __init__(self, session_maker: async_sessionmaker = None):
        self._session_maker = session_maker or async_session_maker

    async def upsert_channel(
        self,
        username: str,
        title: Optional[str] = None,
        target_channel_id: Optional[str] = None,
    ) -> Channel:
        """Добавить канал или реактивировать существующий (по username)."""
        clean = normalize_username(username)
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(select(Channel).where(Channel.username == clean))
                channel = result.scalar_one_or_none()
                if channel is None:
                    channel = Channel(username=clean, title=title, target_channel_id=target_channel_id)
                    session.add(channel)
                    logger.info("channel_created", username=clean)
                else:
                    channel.active = True
                    if title is not None:
                        channel.title = title
                    if target_channel_id is not None:
                        channel.target_channel_id = target_channel_id
            return channel

    async def get_channel(self, channel_id: int) -> Optional[Channel]:
        async with self._session_maker() as session:
            return await session.get(Channel, channel_id)

    async def get_active_channels(self) -> List[Channel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(Channel).where(Channel.active.is_(True)).order_by(Channel.id)
            )
            return list(result.scalars().all())

    async def deactivate_channel(self, channel_id: int) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Channel).where(Channel.id == channel_id).values(active=False)
                )
                if result.rowcount == 0:
                    raise ChannelNotFoundError(f"Канал #{channel_id} не найден")

    async def get_watermark(self, channel_id: int) -> Optional[int]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(Channel.last_checked_msg_id).where(Channel.id == channel_id)
            )
            return result.scalar_one_or_none()

    async def set_watermark(self, channel_id: int, msg_id: Optional[int]) -> bool:
        """
        Поднять watermark канала до ``msg_id``.

        Значение никогда не уменьшается: UPDATE срабатывает, только если
        текущий watermark NULL или меньше нового.

        Returns:
            True если watermark изменился
        """
        if msg_id is None:
            return False
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Channel)
                    .where(Channel.id == channel_id)
                    .where(or_(Channel.last_checked_msg_id.is_(None), Channel.last_checked_msg_id < msg_id))
                    .values(last_checked_msg_id=msg_id)
                )
                return result.rowcount > 0

    async def get_max_message_id(self, channel_id: int) -> Optional[int]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.max(Post.telegram_msg_id)).where(Post.channel_id == channel_id)
            )
            return result.scalar_one_or_none()

    @staticmethod
    async def _find_post(session: AsyncSession, channel_id: int, telegram_msg_id: int) -> Optional[Post]:
        result = await session.execute(
            select(Post)
            .where(Post.channel_id == channel_id)
            .where(Post.telegram_msg_id == telegram_msg_id)
        )
        return result.scalar_one_or_none()

    async def upsert_post(
        self,
        channel_id: int,
        telegram_msg_id: int,
        original_text: str,
        entities: Sequence[EntityRange] = (),
        created_at: Optional[datetime] = None,
        is_historical: bool = False,
    ) -> Tuple[Post, bool]:
        """
        Создать пост или вернуть существующий по (channel_id, telegram_msg_id).

        Для существующего поста меняется только флаг is_historical, и только
        в сторону False (живое появление перекрывает загрузку истории).

        Returns:
            Кортеж (пост, True если создан)
        """
        async with self._session_maker() as session:
            async with session.begin():
                post = await self._find_post(session, channel_id, telegram_msg_id)
                if post is not None:
                    if post.is_historical and not is_historical:
                        post.is_historical = False
                        logger.debug("post_historical_flag_cleared", post_id=post.id)
                    return post, False

        post = Post(
            channel_id=channel_id,
            telegram_msg_id=telegram_msg_id,
            original_text=original_text,
            entities=[e.to_dict() for e in entities],
            translated_text=None,
            is_historical=is_historical,
            created_at=created_at or datetime.utcnow(),
        )
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    session.add(post)
        except IntegrityError:
            # Параллельный путь (listener/poller) успел вставить ту же строку
            logger.info("post_upsert_conflict", channel_id=channel_id, telegram_msg_id=telegram_msg_id)
            async with self._session_maker() as session:
                async with session.begin():
                    existing = await self._find_post(session, channel_id, telegram_msg_id)
                    if existing is None:
                        raise
                    if existing.is_historical and not is_historical:
                        existing.is_historical = False
            return existing, False
        return post, True

    async def get_post(self, post_id: int) -> Optional[Post]:
        """Пост вместе с каналом и медиа."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(Post)
                .options(selectinload(Post.channel), selectinload(Post.media_files))
                .where(Post.id == post_id)
            )
            return result.scalar_one_or_none()

    async def get_untranslated_posts(self, channel_id: Optional[int] = None, limit: Optional[int] = None) -> List[Post]:
        """Посты без перевода, от старых к новым."""
        async with self._session_maker() as session:
            query = select(Post).where(Post.translated_text.is_(None)).order_by(Post.telegram_msg_id)
            if channel_id is not None:
                query = query.where(Post.channel_id == channel_id)
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_translation(self, post_id: int, translated_text: str) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Post).where(Post.id == post_id).values(translated_text=translated_text)
                )
                if result.rowcount == 0:
                    raise PostNotFoundError(f"Пост #{post_id} не найден")

    async def update_status(self, post_id: int, status: PostStatus) -> None:
        """Сменить статус; для PUBLISHED проставляется published_at."""
        status = PostStatus(status)
        values = {"status": status.value}
        if status is PostStatus.PUBLISHED:
            values["published_at"] = datetime.utcnow()
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(update(Post).where(Post.id == post_id).values(**values))
                if result.rowcount == 0:
                    raise PostNotFoundError(f"Пост #{post_id} не найден")

    async def create_media(
        self,
        post_id: int,
        type: str,
        file_path: str,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Media:
        media = Media(post_id=post_id, type=type, file_path=file_path, file_name=file_name, mime_type=mime_type)
        async with self._session_maker() as session:
            async with session.begin():
                session.add(media)
        return media

    async def get_media_by_post(self, post_id: int) -> List[Media]:
        async with self._session_maker() as session:
            result = await session.execute(select(Media).where(Media.post_id == post_id).order_by(Media.id))
            return list(result.scalars().all())

    async def delete_media(self, media_id: int) -> bool:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(delete(Media).where(Media.id == media_id))
                return result.rowcount > 0
