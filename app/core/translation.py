"""Перевод постов: translate -> verify -> сохранение."""
from typing import Optional

from app.utils.exceptions import APIError, PostNotFoundError, TranslationError
from app.utils.logger import get_logger
from app.utils.text_formatter import entities_to_html

logger = get_logger(__name__)


class TranslationCoordinator:
    """Связывает хранилище постов и сервис перевода."""

    def __init__(self, repository, translator):
        self.repository = repository
        self.translator = translator

    async def translate(self, post) -> str:
        """
        Перевести пост и сохранить результат.

        На вход переводчику идет HTML, собранный из чистого текста и
        entities, так что форматирование переживает перевод.

        Raises:
            APIError, TranslationError: ошибки сервиса перевода
        """
        source = entities_to_html(post.original_text, post.entity_ranges)
        translated = await self.translator.translate(source)
        verified = await self.translator.verify(source, translated)
        await self.repository.update_translation(post.id, verified)
        logger.info("post_translated", post_id=post.id, length=len(verified))
        return verified

    async def translate_safely(self, post) -> Optional[str]:
        """
        То же, что ``translate``, но ошибки перевода только логируются.

        Пост остается без перевода; повторить можно через ``translate_post``.
        """
        try:
            return await self.translate(post)
        except (APIError, TranslationError) as e:
            logger.error("translation_failed", post_id=post.id, error=str(e))
            return None

    async def translate_post(self, post_id: int, force: bool = False) -> str:
        """
        Перевести пост по запросу (например, из админки).

        Args:
            post_id: ID поста
            force: Перевести заново, даже если перевод уже есть

        Raises:
            PostNotFoundError: если пост не найден
        """
        post = await self.repository.get_post(post_id)
        if post is None:
            raise PostNotFoundError(f"Пост #{post_id} не найден")
        if post.translated_text and not force:
            return post.translated_text
        return await self.translate(post)

    async def translate_channel_backlog(self, channel_id: Optional[int] = None, limit: Optional[int] = None) -> dict:
        """
        Перевести все посты канала без перевода (например, после загрузки истории).

        Ошибки отдельных постов не прерывают обход.

        Returns:
            Статистика {"translated": n, "failed": m}
        """
        posts = await self.repository.get_untranslated_posts(channel_id=channel_id, limit=limit)
        stats = {"translated": 0, "failed": 0}
        for post in posts:
            if await self.translate_safely(post) is None:
                stats["failed"] += 1
            else:
                stats["translated"] += 1
        logger.info("translation_backlog_done", channel_id=channel_id, **stats)
        return stats
