"""Загрузка полной истории канала по запросу."""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from app.core.ingestion import ingest_message, message_date
from app.utils.logger import get_logger
from app.utils.media_handler import download_message_media
from config.settings import settings

logger = get_logger(__name__)


class FetchProgress(BaseModel):
    """Снимок прогресса загрузки истории."""

    fetched: int = 0
    saved: int = 0
    skipped: int = 0
    done: bool = False
    error: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


ProgressCallback = Callable[[FetchProgress], Union[None, Awaitable[None]]]


class HistoryFetcher:
    """
    Загрузка истории канала от новых сообщений к старым.

    Посты сохраняются как исторические и не переводятся автоматически.
    Защита от двух параллельных загрузок одного канала не здесь, а в
    ``FetchRegistry``.
    """

    def __init__(self, connection, repository, progress_interval: Optional[int] = None, media_root: Optional[str] = None):
        self.connection = connection
        self.repository = repository
        self.progress_interval = progress_interval or settings.history_progress_interval
        self.media_root = media_root

    @staticmethod
    async def _report(progress: FetchProgress, on_progress: Optional[ProgressCallback]) -> None:
        if on_progress is None:
            return
        result = on_progress(progress.model_copy())
        if asyncio.iscoroutine(result):
            await result

    async def fetch(
        self,
        channel_id: int,
        username: str,
        on_progress: Optional[ProgressCallback] = None,
        since: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FetchProgress:
        """
        Загрузить историю канала.

        Отмена кооперативная: ``cancel_event`` проверяется перед каждым
        сообщением, начатая загрузка медиа доводится до конца.

        Args:
            channel_id: ID канала в БД
            username: Username канала в Telegram
            on_progress: Callback (обычный или async) для снимков прогресса
            since: Нижняя граница по дате сообщения (naive UTC)
            cancel_event: Сигнал отмены

        Returns:
            Итоговый прогресс (done=True; error заполнен при ошибке)
        """
        progress = FetchProgress()
        try:
            chat = await self.connection.resolve_channel(username)
            async for message in self.connection.iter_messages(chat):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("history_fetch_cancelled", channel=username, fetched=progress.fetched)
                    break

                progress.fetched += 1
                date = message_date(message)
                if since is not None and date is not None and date < since:
                    logger.info("history_fetch_reached_since", channel=username, since=since.isoformat())
                    break

                await self._process(channel_id, message, progress)
                if progress.fetched % self.progress_interval == 0:
                    await self._report(progress, on_progress)
        except Exception as e:
            logger.error("history_fetch_failed", channel=username, error=str(e))
            progress.error = str(e)

        progress.done = True
        await self._report(progress, on_progress)
        logger.info(
            "history_fetch_done",
            channel=username,
            fetched=progress.fetched,
            saved=progress.saved,
            skipped=progress.skipped,
        )
        return progress

    async def _process(self, channel_id: int, message, progress: FetchProgress) -> None:
        try:
            result = await ingest_message(self.repository, channel_id, message, is_historical=True)
        except Exception as e:
            logger.error("message_save_failed", channel_id=channel_id, message_id=message.id, error=str(e))
            progress.skipped += 1
            return
        if result is None:
            progress.skipped += 1
            return

        # уже существующий пост тоже считается сохраненным
        post, _ = result
        progress.saved += 1
        try:
            await download_message_media(
                self.connection, self.repository, message, post.id, channel_id, self.media_root
            )
        except Exception as e:
            logger.error("media_download_failed", post_id=post.id, error=str(e))
