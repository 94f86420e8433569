"""
Идемпотентное сохранение сообщений каналов.

Все три пути получения постов (listener, poller, загрузка истории) сохраняют
сообщения только через ``ingest``.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from app.models import Post
from app.utils.logger import get_logger
from app.utils.text_formatter import EntityRange, parse_pyrogram_entities

logger = get_logger(__name__)


def message_text(message: Any) -> str:
    """
    Чистый текст сообщения (text или caption).

    Offset'ы entities считаются именно по нему. Нельзя брать отрендеренные
    представления (``.text.markdown``, ``.text.html``): в них уже вставлены
    маркеры, и entities разъедутся с текстом.
    """
    value = getattr(message, "text", None) or getattr(message, "caption", None) or ""
    # pyrogram.types.Str наследуется от str, приводим к обычной строке
    return str.__str__(value) if isinstance(value, str) else str(value)


def message_entities(message: Any) -> List[EntityRange]:
    """Entities того поля, из которого взят текст."""
    if getattr(message, "text", None):
        return parse_pyrogram_entities(getattr(message, "entities", None))
    return parse_pyrogram_entities(getattr(message, "caption_entities", None))


def message_date(message: Any) -> Optional[datetime]:
    """Дата сообщения как naive UTC (так хранятся все даты в БД)."""
    value = getattr(message, "date", None)
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    # Pyrogram отдает naive локальное время; astimezone трактует его как локальное
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def ingest(
    repository,
    channel_id: int,
    telegram_msg_id: int,
    text: str,
    entities: Sequence[EntityRange] = (),
    created_at: Optional[datetime] = None,
    is_historical: bool = False,
) -> Tuple[Post, bool]:
    """
    Создать пост или "коснуться" существующего.

    Повторный вызов с тем же (channel_id, telegram_msg_id) ничего не
    меняет, кроме сброса is_historical, если пост был из истории, а новый
    вызов нет.

    Returns:
        Кортеж (пост, True если создан)
    """
    post, created = await repository.upsert_post(
        channel_id=channel_id,
        telegram_msg_id=telegram_msg_id,
        original_text=text,
        entities=entities,
        created_at=created_at,
        is_historical=is_historical,
    )
    if created:
        logger.info(
            "post_ingested",
            post_id=post.id,
            channel_id=channel_id,
            telegram_msg_id=telegram_msg_id,
            historical=is_historical,
        )
    return post, created


async def ingest_message(repository, channel_id: int, message: Any, is_historical: bool) -> Optional[Tuple[Post, bool]]:
    """
    Сохранить сообщение Telegram.

    Returns:
        Результат ``ingest`` или None, если в сообщении нет текста
    """
    text = message_text(message)
    if not text.strip():
        return None
    return await ingest(
        repository,
        channel_id,
        message.id,
        text,
        message_entities(message),
        message_date(message),
        is_historical,
    )
