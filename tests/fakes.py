"""Фейковые Telegram-подключение и переводчик для тестов."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

from app.utils.exceptions import CaptionTooLongError, ChannelNotFoundError, MediaProcessingError, TranslationError


def make_message(
    msg_id: int,
    text: Optional[str] = None,
    caption: Optional[str] = None,
    entities=None,
    age: timedelta = timedelta(minutes=1),
    username: str = "source_channel",
    photo: bool = False,
    document=None,
    media_group_id: Optional[str] = None,
):
    """Сообщение канала в форме pyrogram.types.Message (только нужные поля)."""
    return SimpleNamespace(
        id=msg_id,
        text=text,
        caption=caption,
        entities=entities if text else None,
        caption_entities=entities if caption and not text else None,
        date=datetime.now(timezone.utc) - age,
        chat=SimpleNamespace(username=username, id=-1001000000000),
        photo=SimpleNamespace(file_id=f"photo{msg_id}") if photo else None,
        video=None,
        animation=None,
        audio=None,
        voice=None,
        document=document,
        media_group_id=media_group_id,
    )


class FakeConnection:
    """Замена TelegramConnection: история в памяти, отправки записываются."""

    def __init__(self, messages=(), caption_limit: Optional[int] = None):
        self.messages: List = list(messages)
        self.caption_limit = caption_limit
        self.missing_channels = set()
        self.media_groups: Dict[str, List] = {}
        self.failed_downloads = set()
        self.sent: List[tuple] = []
        self.downloads: List[int] = []
        self.iter_calls: List[dict] = []
        self.handler = None

    async def resolve_channel(self, chat):
        if chat in self.missing_channels:
            raise ChannelNotFoundError(f"{chat} не найден")
        return SimpleNamespace(id=-1001000000000, username=chat, title=f"Title {chat}")

    async def iter_messages(self, chat, min_id=None, limit=None):
        self.iter_calls.append({"min_id": min_id, "limit": limit})
        count = 0
        for message in sorted(self.messages, key=lambda m: m.id, reverse=True):
            if min_id is not None and message.id <= min_id:
                break
            if limit and count >= limit:
                break
            count += 1
            yield message

    async def get_media_group(self, message):
        return self.media_groups.get(message.media_group_id, [message])

    async def subscribe(self, callback):
        self.handler = callback

    async def send_text(self, target, text, markup_mode="html"):
        self.sent.append(("text", target, text, markup_mode))

    async def send_media(self, target, files, caption=None, markup_mode=None):
        if caption and self.caption_limit is not None and len(caption) > self.caption_limit:
            raise CaptionTooLongError("MEDIA_CAPTION_TOO_LONG")
        self.sent.append(("media", target, list(files), caption, markup_mode))

    async def download_media(self, message):
        if message.id in self.failed_downloads:
            raise MediaProcessingError(f"download failed for {message.id}")
        self.downloads.append(message.id)
        return f"data-{message.id}".encode()


class FakeTranslator:
    """Переводчик, который помечает текст префиксом."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.translated: List[str] = []
        self.verified: List[tuple] = []

    async def translate(self, text: str) -> str:
        if self.fail:
            raise TranslationError("Пустой ответ LLM")
        self.translated.append(text)
        return f"[uk] {text}"

    async def verify(self, original: str, translated: str) -> str:
        self.verified.append((original, translated))
        return translated
