"""Кастомные исключения для приложения."""
from typing import Optional


class MirrorError(Exception):
    """Базовое исключение сервиса зеркалирования."""
    pass


class APIError(MirrorError):
    """Ошибка внешнего API."""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class ConfigurationError(MirrorError):
    """Не хватает настроек (например, не задан целевой канал)."""
    pass


class ChannelNotFoundError(MirrorError):
    """Канал не найден или не является каналом."""
    pass


class PostNotFoundError(MirrorError):
    """Пост не найден."""
    pass


class InvalidPostStateError(MirrorError):
    """Операция недопустима для текущего статуса поста."""
    pass


class MediaProcessingError(MirrorError):
    """Ошибка обработки медиа."""
    pass


class TranslationError(MirrorError):
    """Сервис перевода не вернул результат."""
    pass


class CaptionTooLongError(MirrorError):
    """Платформа отклонила подпись к медиа как слишком длинную."""
    pass


class FetchAlreadyRunningError(MirrorError):
    """Загрузка истории для канала уже выполняется."""
    def __init__(self, channel_id: int):
        super().__init__(f"История канала {channel_id} уже загружается")
        self.channel_id = channel_id


class AuthFlowError(MirrorError):
    """Ошибка интерактивной авторизации MTProto."""
    pass
