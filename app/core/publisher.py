"""Публикация одобренных постов в целевой канал."""
from typing import List, Optional, Tuple, Union

from app.utils.chat_id_converter import convert_chat_id
from app.utils.enums import PostStatus
from app.utils.exceptions import (
    CaptionTooLongError,
    ConfigurationError,
    InvalidPostStateError,
    PostNotFoundError,
)
from app.utils.logger import get_logger
from app.utils.media_handler import resolve_media_path
from app.utils.text_formatter import (
    entities_to_html,
    is_broken_html,
    strip_html_tags,
    strip_markdown_artifacts,
)
from config.settings import settings

logger = get_logger(__name__)


def select_outbound_text(post) -> Tuple[str, Optional[str]]:
    """
    Выбрать текст публикации и режим разметки.

    * есть перевод: он уже в Telegram HTML;
    * перевод из старых битых (HTML вперемешку с Markdown): чистый текст
      без разметки;
    * перевода нет: HTML из оригинала и entities.

    Returns:
        Кортеж (текст, "html" или None)
    """
    if post.translated_text:
        if is_broken_html(post.translated_text):
            logger.warning("broken_html_detected", post_id=post.id)
            return strip_html_tags(strip_markdown_artifacts(post.translated_text)), None
        return post.translated_text, "html"
    return entities_to_html(strip_markdown_artifacts(post.original_text), post.entity_ranges), "html"


class PublishDispatcher:
    """Отправка поста в Telegram и перевод его в статус PUBLISHED."""

    def __init__(self, connection, repository, default_target: Optional[str] = None, media_root: Optional[str] = None):
        self.connection = connection
        self.repository = repository
        self.default_target = default_target if default_target is not None else settings.target_channel_id
        self.media_root = media_root

    def resolve_target(self, channel) -> Union[int, str]:
        """
        Канал публикации: переопределение канала, иначе глобальный.

        Raises:
            ConfigurationError: если не задан ни один
        """
        target = channel.target_channel_id or self.default_target
        if not target:
            raise ConfigurationError(f"Не задан канал публикации для @{channel.username}")
        return convert_chat_id(target)

    async def publish(self, post_id: int) -> None:
        """
        Опубликовать одобренный пост.

        Пост с медиа отправляется одним сообщением с подписью. Если Telegram
        отклоняет подпись как слишком длинную, сначала отправляются медиа без
        подписи, затем отдельным сообщением текст. Любая другая ошибка
        пробрасывается, и пост остается APPROVED.

        Raises:
            PostNotFoundError: пост не найден
            InvalidPostStateError: пост не одобрен
            ConfigurationError: не задан канал публикации
        """
        post = await self.repository.get_post(post_id)
        if post is None:
            raise PostNotFoundError(f"Пост #{post_id} не найден")
        if post.status != PostStatus.APPROVED.value:
            raise InvalidPostStateError(f"Пост #{post_id} не одобрен (статус {post.status})")

        target = self.resolve_target(post.channel)
        text, markup_mode = select_outbound_text(post)
        files = self._outgoing_files(post)

        if not files:
            await self.connection.send_text(target, text, markup_mode)
        else:
            try:
                await self.connection.send_media(target, files, caption=text, markup_mode=markup_mode)
            except CaptionTooLongError:
                logger.info("caption_too_long_fallback", post_id=post_id, length=len(text))
                await self.connection.send_media(target, files)
                await self.connection.send_text(target, text, markup_mode)

        await self.repository.update_status(post_id, PostStatus.PUBLISHED)
        logger.info("post_published", post_id=post_id, target=target, media=len(files))

    def _outgoing_files(self, post) -> List[Tuple[str, str]]:
        return [(resolve_media_path(m.file_path, self.media_root), m.type) for m in post.media_files]
