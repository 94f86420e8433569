"""Listener: живые сообщения из отслеживаемых каналов."""
from typing import Any, Optional

from app.core.ingestion import ingest_message
from app.utils.logger import get_logger
from app.utils.media_handler import download_message_media

logger = get_logger(__name__)


class ChannelListener:
    """
    Обработчик новых сообщений из всех каналов аккаунта.

    Набор активных каналов читается из БД на каждое событие, поэтому
    добавленные через админку каналы подхватываются без перезапуска.
    """

    def __init__(self, connection, repository, translation, media_root: Optional[str] = None):
        self.connection = connection
        self.repository = repository
        self.translation = translation
        self.media_root = media_root
        self._running = False

    async def start(self) -> None:
        self._running = True
        await self.connection.subscribe(self._handle_message)
        logger.info("listener_started")

    def stop(self) -> None:
        self._running = False

    async def _handle_message(self, client, message) -> None:
        if not self._running:
            return
        try:
            await self.handle(message)
        except Exception as e:
            logger.error("listener_message_failed", message_id=getattr(message, "id", None), error=str(e))

    async def _resolve_channel(self, message: Any):
        chat = getattr(message, "chat", None)
        username = getattr(chat, "username", None)
        if not username:
            return None
        username = username.lower()
        for channel in await self.repository.get_active_channels():
            if channel.username == username:
                return channel
        return None

    async def handle(self, message: Any):
        """
        Сохранить сообщение, скачать медиа и перевести.

        Ошибки загрузки медиа и перевода только логируются: пост остается
        сохраненным без медиа или без перевода.

        Returns:
            Пост или None, если сообщение пропущено
        """
        channel = await self._resolve_channel(message)
        if channel is None:
            return None

        result = await ingest_message(self.repository, channel.id, message, is_historical=False)
        if result is None:
            logger.debug("listener_message_without_text", channel=channel.username, message_id=message.id)
            return None
        post, created = result
        logger.info("listener_new_post", channel=channel.username, post_id=post.id, created=created)

        try:
            await download_message_media(
                self.connection, self.repository, message, post.id, channel.id, self.media_root
            )
        except Exception as e:
            logger.error("media_download_failed", post_id=post.id, error=str(e))

        if not post.translated_text:
            await self.translation.translate_safely(post)
        return post
