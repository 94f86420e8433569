"""Загрузка медиа-файлов постов из Telegram."""
import asyncio
from pathlib import Path
from typing import Any, List, Optional, Tuple

from app.utils.enums import MediaType
from app.utils.exceptions import MediaProcessingError
from app.utils.logger import get_logger
from config.settings import settings

logger = get_logger(__name__)


def detect_media(message: Any) -> Optional[Tuple[str, str, Optional[str]]]:
    """
    Определить тип медиа сообщения и имя файла для сохранения.

    Returns:
        Кортеж (тип, имя файла, mime type) или None, если медиа нет
    """
    msg_id = message.id
    photo = getattr(message, "photo", None)
    if photo:
        return MediaType.PHOTO.value, f"photo_{msg_id}.jpg", "image/jpeg"

    animation = getattr(message, "animation", None)
    if animation:
        return MediaType.ANIMATION.value, f"animation_{msg_id}.mp4", getattr(animation, "mime_type", None)

    video = getattr(message, "video", None)
    if video:
        return MediaType.VIDEO.value, f"video_{msg_id}.mp4", getattr(video, "mime_type", None)

    audio = getattr(message, "audio", None)
    if audio:
        name = getattr(audio, "file_name", None) or f"audio_{msg_id}.mp3"
        return MediaType.AUDIO.value, name, getattr(audio, "mime_type", None)

    voice = getattr(message, "voice", None)
    if voice:
        return MediaType.VOICE.value, f"voice_{msg_id}.ogg", getattr(voice, "mime_type", None)

    document = getattr(message, "document", None)
    if document:
        mime_type = getattr(document, "mime_type", None) or ""
        name = getattr(document, "file_name", None)
        if mime_type.startswith("video/"):
            return MediaType.VIDEO.value, name or f"video_{msg_id}.mp4", mime_type
        return MediaType.DOCUMENT.value, name or f"file_{msg_id}", mime_type or None

    return None


def _safe_file_name(name: str) -> str:
    # Имя из документа приходит от автора канала: оставляем только базовое имя
    return Path(name).name or "file"


async def download_message_media(
    connection,
    repository,
    message: Any,
    post_id: int,
    channel_id: int,
    media_root: Optional[str] = None,
) -> List:
    """
    Скачать медиа сообщения (или всего альбома) и создать записи Media.

    Если у поста уже есть медиа, ничего не делаем: одно и то же сообщение
    могут обработать и listener, и poller.

    Файлы сохраняются в ``<media_root>/<channel_id>/<post_id>/``, в БД
    пишется путь относительно ``media_root``.

    Returns:
        Список созданных записей Media

    Raises:
        MediaProcessingError: при ошибке загрузки или записи файла
    """
    existing = await repository.get_media_by_post(post_id)
    if existing:
        logger.debug("media_already_downloaded", post_id=post_id, count=len(existing))
        return []

    if getattr(message, "media_group_id", None):
        group = await connection.get_media_group(message)
    else:
        group = [message]

    root = Path(media_root or settings.media_storage_path)
    post_dir = root / str(channel_id) / str(post_id)
    loop = asyncio.get_running_loop()
    created = []

    for item in group:
        detected = detect_media(item)
        if detected is None:
            continue
        media_type, file_name, mime_type = detected
        file_name = _safe_file_name(file_name)
        file_path = post_dir / file_name

        try:
            data = await connection.download_media(item)
            await loop.run_in_executor(None, _write_file, file_path, data)
        except MediaProcessingError:
            raise
        except Exception as e:
            raise MediaProcessingError(f"Не удалось скачать медиа сообщения {item.id}: {e}") from e

        media = await repository.create_media(
            post_id=post_id,
            type=media_type,
            file_path=file_path.relative_to(root).as_posix(),
            file_name=file_name,
            mime_type=mime_type,
        )
        created.append(media)
        logger.info("media_downloaded", post_id=post_id, type=media_type, file_name=file_name, size=len(data))

    return created


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def resolve_media_path(relative_path: str, media_root: Optional[str] = None) -> str:
    """Абсолютный путь к файлу по записи Media."""
    return str(Path(media_root or settings.media_storage_path) / relative_path)
