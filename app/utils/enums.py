"""Перечисления для статусов и типов."""
from enum import Enum


class PostStatus(str, Enum):
    """Статусы поста в очереди модерации."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"


class EntityType(str, Enum):
    """Типы entity-диапазонов форматирования."""
    BOLD = "bold"
    ITALIC = "italic"
    CODE = "code"
    PRE = "pre"
    TEXT_URL = "textUrl"
    URL = "url"
    STRIKETHROUGH = "strikethrough"
    UNDERLINE = "underline"
    BLOCKQUOTE = "blockquote"
    SPOILER = "spoiler"
    MENTION = "mention"
    HASHTAG = "hashtag"
    BOT_COMMAND = "botCommand"
    UNKNOWN = "unknown"


class MediaType(str, Enum):
    """Типы медиа-файлов."""
    PHOTO = "photo"
    VIDEO = "video"
    ANIMATION = "animation"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"


class AuthState(str, Enum):
    """Состояния интерактивной авторизации."""
    IDLE = "idle"
    CODE_SENT = "code_sent"
    PASSWORD_REQUIRED = "password_required"
    AUTHORIZED = "authorized"
    FAILED = "failed"
