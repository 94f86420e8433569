"""Реестр активных загрузок истории (не больше одной на канал)."""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

from app.utils.exceptions import FetchAlreadyRunningError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class FetchRegistry:
    """Таблица блокировок по channel_id с сигналом отмены для каждой загрузки."""

    def __init__(self):
        # channel_id -> сигнал отмены активной загрузки
        self._active: Dict[int, asyncio.Event] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, channel_id: int) -> asyncio.Event:
        """
        Занять канал.

        Returns:
            Сигнал отмены для этой загрузки

        Raises:
            FetchAlreadyRunningError: если загрузка уже идет
        """
        async with self._lock:
            if channel_id in self._active:
                raise FetchAlreadyRunningError(channel_id)
            event = asyncio.Event()
            self._active[channel_id] = event
            logger.info("history_fetch_registered", channel_id=channel_id)
            return event

    async def release(self, channel_id: int) -> None:
        async with self._lock:
            self._active.pop(channel_id, None)
            logger.info("history_fetch_released", channel_id=channel_id)

    async def cancel(self, channel_id: int) -> bool:
        """
        Попросить загрузку остановиться.

        Returns:
            False если для канала нет активной загрузки
        """
        async with self._lock:
            event = self._active.get(channel_id)
        if event is None:
            return False
        event.set()
        logger.info("history_fetch_cancel_requested", channel_id=channel_id)
        return True

    async def is_running(self, channel_id: int) -> bool:
        async with self._lock:
            return channel_id in self._active

    @asynccontextmanager
    async def claim(self, channel_id: int) -> AsyncIterator[asyncio.Event]:
        event = await self.acquire(channel_id)
        try:
            yield event
        finally:
            await self.release(channel_id)


async def stream_history_fetch(
    registry: FetchRegistry,
    fetcher,
    channel,
    since: Optional[datetime] = None,
) -> AsyncIterator[str]:
    """
    Загрузить историю канала и отдавать прогресс как JSON-строки.

    Последний элемент содержит ``"done": true``. Если потребитель
    закрывает генератор раньше (клиент отключился), загрузка отменяется
    и канал освобождается.

    Raises:
        FetchAlreadyRunningError: на первой итерации, если канал занят
    """
    async with registry.claim(channel.id) as cancel_event:
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(
            fetcher.fetch(
                channel.id,
                channel.username,
                on_progress=queue.put_nowait,
                since=since,
                cancel_event=cancel_event,
            )
        )
        # None в очереди: задача завершилась
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                progress = await queue.get()
                if progress is None:
                    break
                yield progress.to_json()
                if progress.done:
                    break
            await task
        finally:
            if not task.done():
                cancel_event.set()
                await task
