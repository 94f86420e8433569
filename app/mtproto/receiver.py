"""Сервис зеркалирования: одно подключение к Telegram и все компоненты поверх него."""
import asyncio
from datetime import datetime
from typing import AsyncIterator, Optional

from app.core.fetch_registry import FetchRegistry, stream_history_fetch
from app.core.history_fetcher import HistoryFetcher
from app.core.listener import ChannelListener
from app.core.poller import ChannelPoller
from app.core.publisher import PublishDispatcher
from app.core.translation import TranslationCoordinator
from app.db.repository import Repository
from app.mtproto.client import TelegramConnection
from app.translator.llm_client import LLMTranslator
from app.utils.exceptions import ChannelNotFoundError, ConfigurationError
from app.utils.logger import get_logger
from app.utils.validators import ChannelInput
from config.settings import settings

logger = get_logger(__name__)


class MirrorService:
    """
    Владелец подключения и компонентов синхронизации.

    Методы ``add_channel``, ``publish``, ``translate_post`` и
    ``fetch_history`` вызываются внешним слоем (API, админка).
    """

    def __init__(
        self,
        connection: Optional[TelegramConnection] = None,
        repository: Optional[Repository] = None,
        translator: Optional[LLMTranslator] = None,
    ):
        self.connection = connection or TelegramConnection()
        self.repository = repository or Repository()
        self.translator = translator or LLMTranslator()
        self.translation = TranslationCoordinator(self.repository, self.translator)
        self.listener = ChannelListener(self.connection, self.repository, self.translation)
        self.poller = ChannelPoller(self.connection, self.repository, self.translation)
        self.history = HistoryFetcher(self.connection, self.repository)
        self.publisher = PublishDispatcher(self.connection, self.repository)
        self.fetches = FetchRegistry()
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """
        Подключиться к Telegram и запустить listener и poller.

        Raises:
            ConfigurationError: если не заданы учетные данные MTProto
        """
        if not settings.telegram_configured:
            raise ConfigurationError("Не заданы TELEGRAM_API_ID и TELEGRAM_API_HASH")
        logger.info("mirror_service_starting")
        await self.connection.ensure_connected()
        await self.listener.start()
        self.poller.start()
        channels = await self.repository.get_active_channels()
        logger.info("mirror_service_started", channels=[c.username for c in channels])

    async def stop(self) -> None:
        logger.info("mirror_service_stopping")
        self.listener.stop()
        await self.poller.stop()
        await self.translator.close()
        await self.connection.disconnect()
        self._stopped.set()

    async def run(self) -> None:
        """Запуск и работа до остановки."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if not self._stopped.is_set():
                await self.stop()

    async def add_channel(self, username: str, title: Optional[str] = None, target_channel_id: Optional[str] = None):
        """
        Добавить канал и сразу запустить его первичную синхронизацию.

        Raises:
            pydantic.ValidationError: некорректный username
            ChannelNotFoundError: username не является каналом
        """
        data = ChannelInput(username=username, title=title, target_channel_id=target_channel_id)
        chat = await self.connection.resolve_channel(data.username)
        if not chat.username:
            raise ChannelNotFoundError(f"У канала {data.username} нет публичного username")
        channel = await self.repository.upsert_channel(
            data.username, title=data.title or chat.title, target_channel_id=data.target_channel_id
        )
        if channel.last_checked_msg_id is None:
            self.poller.trigger_channel_sync(channel)
        return channel

    async def publish(self, post_id: int) -> None:
        await self.publisher.publish(post_id)

    async def translate_post(self, post_id: int, force: bool = False) -> str:
        return await self.translation.translate_post(post_id, force=force)

    def fetch_history(self, channel, since: Optional[datetime] = None) -> AsyncIterator[str]:
        """Поток JSON-снимков прогресса загрузки истории канала."""
        return stream_history_fetch(self.fetches, self.history, channel, since=since)
