"""
Poller: периодическая синхронизация каналов по watermark.

Состояния канала:

* ``last_checked_msg_id IS NULL``: канал еще не синхронизирован,
  выполняется первичная синхронизация за окно ``poller_initial_sync_days``;
* иначе инкрементальный опрос сообщений новее watermark.

Listener работает параллельно и без общей блокировки, оба пути могут
сохранить одно и то же сообщение. Дубли исключает идемпотентный ``ingest``,
а повторный перевод предотвращает проверка "перевода еще нет". Эта проверка не
транзакционная: если listener и poller обработают сообщение почти
одновременно, пост будет переведен дважды (последний перевод перезапишет
первый). Это допустимая лишняя работа.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional, Set

from app.core.ingestion import ingest_message, message_date
from app.utils.logger import get_logger
from app.utils.media_handler import download_message_media
from config.settings import settings

logger = get_logger(__name__)


class ChannelPoller:
    """Периодический опрос активных каналов (не более одного прохода одновременно)."""

    def __init__(
        self,
        connection,
        repository,
        translation,
        interval_seconds: Optional[float] = None,
        initial_sync_days: Optional[int] = None,
        media_root: Optional[str] = None,
    ):
        self.connection = connection
        self.repository = repository
        self.translation = translation
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.poller_interval_seconds
        self.initial_sync_days = initial_sync_days if initial_sync_days is not None else settings.poller_initial_sync_days
        self.media_root = media_root
        self._is_polling = False
        self._task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    def start(self) -> None:
        """Запустить цикл: первый проход сразу (догоняем после рестарта), дальше по интервалу."""
        if self._task is not None and not self._task.done():
            return
        logger.info(
            "poller_started",
            interval_seconds=self.interval_seconds,
            initial_sync_days=self.initial_sync_days,
        )
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        while True:
            await self.run_poll()
            await asyncio.sleep(self.interval_seconds)

    async def stop(self) -> None:
        tasks = list(self._background)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._background.clear()
        logger.info("poller_stopped")

    async def run_poll(self) -> bool:
        """
        Один проход по всем каналам.

        Если предыдущий проход еще идет, новый пропускается (не ставится в очередь).

        Returns:
            False если проход пропущен
        """
        if self._is_polling:
            logger.info("poll_skipped", reason="previous poll still running")
            return False
        self._is_polling = True
        try:
            await self.poll_all_channels()
        except Exception as e:
            logger.error("poll_failed", error=str(e))
        finally:
            self._is_polling = False
        return True

    async def poll_all_channels(self) -> None:
        channels = await self.repository.get_active_channels()
        for channel in channels:
            try:
                if channel.last_checked_msg_id is None:
                    await self.initial_sync(channel)
                else:
                    await self.incremental_poll(channel)
            except Exception as e:
                logger.error("channel_poll_failed", channel=channel.username, error=str(e))

    def trigger_channel_sync(self, channel) -> asyncio.Task:
        """Немедленная первичная синхронизация нового канала в фоне (вне очереди опроса)."""
        logger.info("channel_sync_triggered", channel=channel.username)
        task = asyncio.create_task(self._background_sync(channel))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_sync(self, channel) -> Optional[int]:
        try:
            return await self.initial_sync(channel)
        except Exception as e:
            logger.error("channel_sync_failed", channel=channel.username, error=str(e))
            return None

    async def _download_media(self, message: Any, post, channel) -> None:
        try:
            await download_message_media(
                self.connection, self.repository, message, post.id, channel.id, self.media_root
            )
        except Exception as e:
            logger.error("media_download_failed", post_id=post.id, error=str(e))

    async def initial_sync(self, channel) -> Optional[int]:
        """
        Первичная синхронизация: история за окно ``initial_sync_days``.

        Watermark = максимальный message_id в окне, включая сообщения без
        текста. Если в окне ничего нет, берется максимальный message_id из
        БД, а если и там пусто, то последний message_id канала. Иначе
        следующий инкрементальный опрос выкачал бы всю историю.

        Returns:
            Установленный watermark
        """
        logger.info("initial_sync_started", channel=channel.username)
        chat = await self.connection.resolve_channel(channel.username)
        since = datetime.utcnow() - timedelta(days=self.initial_sync_days)

        max_msg_id = 0
        saved = 0
        async for message in self.connection.iter_messages(chat):
            date = message_date(message)
            if date is not None and date < since:
                break
            max_msg_id = max(max_msg_id, message.id)

            try:
                result = await ingest_message(self.repository, channel.id, message, is_historical=True)
            except Exception as e:
                logger.error("message_save_failed", channel=channel.username, message_id=message.id, error=str(e))
                continue
            if result is None:
                continue
            post, _ = result
            saved += 1
            await self._download_media(message, post, channel)

        if max_msg_id == 0:
            db_max = await self.repository.get_max_message_id(channel.id)
            if db_max:
                max_msg_id = db_max
            else:
                async for message in self.connection.iter_messages(chat, limit=1):
                    max_msg_id = message.id

        watermark = max_msg_id or None
        await self.repository.set_watermark(channel.id, watermark)
        logger.info("initial_sync_done", channel=channel.username, saved=saved, watermark=watermark)
        return watermark

    async def incremental_poll(self, channel) -> int:
        """
        Забрать сообщения новее watermark и обработать от старых к новым.

        Watermark сохраняется после каждого прохода (в том числе прерванного)
        и равен максимальному полностью обработанному message_id, даже если
        у сообщения не было текста.

        Returns:
            Новый watermark
        """
        watermark = channel.last_checked_msg_id
        chat = await self.connection.resolve_channel(channel.username)

        messages = [m async for m in self.connection.iter_messages(chat, min_id=watermark)]
        if not messages:
            return watermark
        messages.reverse()

        new_max = watermark
        try:
            for message in messages:
                await self._process_new_message(channel, message)
                new_max = max(new_max, message.id)
        finally:
            await self.repository.set_watermark(channel.id, new_max)

        logger.info("incremental_poll_done", channel=channel.username, new_messages=len(messages), watermark=new_max)
        return new_max

    async def _process_new_message(self, channel, message: Any) -> None:
        try:
            result = await ingest_message(self.repository, channel.id, message, is_historical=False)
        except Exception as e:
            logger.error("message_save_failed", channel=channel.username, message_id=message.id, error=str(e))
            return
        if result is None:
            return
        post, _ = result
        await self._download_media(message, post, channel)
        # listener мог уже перевести этот пост
        if post.translated_text:
            return
        try:
            await self.translation.translate_safely(post)
        except Exception as e:
            # пост остается без перевода, watermark все равно двигается дальше
            logger.error("translation_failed", post_id=post.id, error=str(e))
