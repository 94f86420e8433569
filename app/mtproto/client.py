"""
Подключение к Telegram через MTProto (Pyrogram).

``TelegramConnection``: единственный владелец клиента Pyrogram в процессе.
Его явно создают при старте и передают всем компонентам, которым нужен
доступ к Telegram; подключение ленивое, с переподключением и остановкой.
"""
import asyncio
from io import BytesIO
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from pyrogram import Client, filters
from pyrogram.enums import ChatType, ParseMode
from pyrogram.errors import MediaCaptionTooLong, RPCError
from pyrogram.handlers import MessageHandler
from pyrogram.types import (
    Chat,
    InputMediaAudio,
    InputMediaDocument,
    InputMediaPhoto,
    InputMediaVideo,
    Message,
)

from app.utils.enums import MediaType
from app.utils.exceptions import CaptionTooLongError, ChannelNotFoundError, MediaProcessingError
from app.utils.logger import get_logger
from config.settings import settings

logger = get_logger(__name__)

MessageCallback = Callable[[Client, Message], Awaitable[None]]

# Файл для отправки: (путь, тип медиа)
OutgoingFile = Tuple[str, str]


def _parse_mode(markup_mode: Optional[str]) -> ParseMode:
    return ParseMode.HTML if markup_mode == "html" else ParseMode.DISABLED


class TelegramConnection:
    """Владелец клиента Pyrogram: подключение, чтение истории, отправка, загрузка медиа."""

    def __init__(
        self,
        api_id: Optional[int] = None,
        api_hash: Optional[str] = None,
        session_string: Optional[str] = None,
        session_name: Optional[str] = None,
    ):
        self.api_id = api_id or settings.telegram_api_id
        self.api_hash = api_hash or settings.telegram_api_hash
        self.session_string = session_string if session_string is not None else settings.telegram_session_string
        self.session_name = session_name or settings.telegram_session_name
        self._client: Optional[Client] = None
        self._connect_lock = asyncio.Lock()
        # Pyrogram не умеет параллельно качать медиа: все загрузки последовательно
        self._download_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _build_client(self) -> Client:
        kwargs = {"api_id": self.api_id, "api_hash": self.api_hash}
        if self.session_string:
            kwargs["session_string"] = self.session_string
        return Client(self.session_name, **kwargs)

    async def ensure_connected(self) -> Client:
        """Вернуть подключенный клиент, подключившись при необходимости."""
        async with self._connect_lock:
            if self.is_connected:
                return self._client
            if self._client is None:
                self._client = self._build_client()
            logger.info("telegram_connecting", session=self.session_name)
            await self._client.start()
            me = await self._client.get_me()
            logger.info("telegram_connected", user_id=me.id, username=me.username)
            return self._client

    async def reconnect(self) -> Client:
        await self.disconnect()
        return await self.ensure_connected()

    async def disconnect(self) -> None:
        async with self._connect_lock:
            if self._client is not None and self._client.is_connected:
                try:
                    await self._client.stop()
                    logger.info("telegram_disconnected")
                except RPCError as e:
                    logger.warning("telegram_disconnect_error", error=str(e))
            self._client = None

    async def resolve_channel(self, chat: Union[str, int]) -> Chat:
        """
        Найти канал по username или числовому ID.

        Raises:
            ChannelNotFoundError: если чат не найден или это не канал
        """
        client = await self.ensure_connected()
        try:
            resolved = await client.get_chat(chat)
        except (RPCError, KeyError, ValueError) as e:
            raise ChannelNotFoundError(f"Не удалось найти канал {chat}: {e}") from e
        if resolved.type != ChatType.CHANNEL:
            raise ChannelNotFoundError(f"{chat} не является каналом")
        return resolved

    async def iter_messages(
        self,
        chat: Union[Chat, str, int],
        min_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Message]:
        """
        Итерировать историю канала от новых к старым.

        Args:
            chat: Канал
            min_id: Исключающая нижняя граница по message_id
            limit: Максимум сообщений (None = без ограничения)
        """
        client = await self.ensure_connected()
        chat_id = chat.id if isinstance(chat, Chat) else chat
        async for message in client.get_chat_history(chat_id, limit=limit or 0):
            if min_id is not None and message.id <= min_id:
                break
            if message.empty or message.service:
                continue
            yield message

    async def get_media_group(self, message: Message) -> List[Message]:
        """Все сообщения альбома, к которому относится ``message``."""
        if not message.media_group_id:
            return [message]
        client = await self.ensure_connected()
        return await client.get_media_group(message.chat.id, message.id)

    async def subscribe(self, callback: MessageCallback) -> None:
        """Подписаться на все новые сообщения в каналах."""
        client = await self.ensure_connected()
        client.add_handler(MessageHandler(callback, filters.channel))
        logger.info("telegram_subscribed")

    async def send_text(self, target: Union[str, int], text: str, markup_mode: Optional[str] = "html") -> Message:
        client = await self.ensure_connected()
        return await client.send_message(
            target, text, parse_mode=_parse_mode(markup_mode), disable_web_page_preview=False
        )

    async def send_media(
        self,
        target: Union[str, int],
        files: Sequence[OutgoingFile],
        caption: Optional[str] = None,
        markup_mode: Optional[str] = None,
    ) -> List[Message]:
        """
        Отправить одно медиа или альбом с необязательной подписью.

        Raises:
            CaptionTooLongError: если Telegram отклонил подпись по длине
        """
        if not files:
            raise MediaProcessingError("Нет файлов для отправки")
        client = await self.ensure_connected()
        parse_mode = _parse_mode(markup_mode)
        try:
            if len(files) == 1:
                return [await self._send_single(client, target, files[0], caption, parse_mode)]
            media = []
            for index, (path, media_type) in enumerate(files):
                item_caption = caption if index == 0 and caption else ""
                media.append(self._input_media(path, media_type, item_caption, parse_mode))
            return await client.send_media_group(target, media)
        except MediaCaptionTooLong as e:
            raise CaptionTooLongError(str(e)) from e

    @staticmethod
    async def _send_single(client: Client, target, file: OutgoingFile, caption, parse_mode) -> Message:
        path, media_type = file
        caption = caption or ""
        if media_type == MediaType.PHOTO.value:
            return await client.send_photo(target, path, caption=caption, parse_mode=parse_mode)
        if media_type == MediaType.VIDEO.value:
            return await client.send_video(target, path, caption=caption, parse_mode=parse_mode)
        if media_type == MediaType.ANIMATION.value:
            return await client.send_animation(target, path, caption=caption, parse_mode=parse_mode)
        if media_type == MediaType.AUDIO.value:
            return await client.send_audio(target, path, caption=caption, parse_mode=parse_mode)
        if media_type == MediaType.VOICE.value:
            return await client.send_voice(target, path, caption=caption, parse_mode=parse_mode)
        return await client.send_document(
            target, path, caption=caption, parse_mode=parse_mode, force_document=True
        )

    @staticmethod
    def _input_media(path: str, media_type: str, caption: str, parse_mode: ParseMode):
        if media_type == MediaType.PHOTO.value:
            return InputMediaPhoto(path, caption=caption, parse_mode=parse_mode)
        if media_type in (MediaType.VIDEO.value, MediaType.ANIMATION.value):
            return InputMediaVideo(path, caption=caption, parse_mode=parse_mode)
        if media_type in (MediaType.AUDIO.value, MediaType.VOICE.value):
            return InputMediaAudio(path, caption=caption, parse_mode=parse_mode)
        return InputMediaDocument(path, caption=caption, parse_mode=parse_mode)

    async def download_media(self, message: Message) -> bytes:
        """Скачать медиа сообщения в память (загрузки идут строго по одной)."""
        client = await self.ensure_connected()
        async with self._download_lock:
            buffer = await client.download_media(message, in_memory=True)
        if buffer is None:
            raise MediaProcessingError(f"Пустой ответ при загрузке медиа сообщения {message.id}")
        if isinstance(buffer, BytesIO):
            return buffer.getvalue()
        return bytes(buffer)
