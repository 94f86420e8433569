"""Тесты для хранилища каналов и постов."""
import pytest

from app.utils.enums import PostStatus
from app.utils.exceptions import ChannelNotFoundError, PostNotFoundError
from app.utils.text_formatter import EntityRange


@pytest.mark.asyncio
@pytest.mark.unit
async def test_upsert_channel_normalizes_and_reactivates(repository):
    """Username хранится без @ в нижнем регистре, повторное добавление реактивирует канал."""
    channel = await repository.upsert_channel("@Source_Channel", title="Source")
    assert channel.username == "source_channel"
    assert channel.active is True
    assert channel.last_checked_msg_id is None

    await repository.deactivate_channel(channel.id)
    assert await repository.get_active_channels() == []

    again = await repository.upsert_channel("source_channel", target_channel_id="@target")
    assert again.id == channel.id
    active = await repository.get_active_channels()
    assert [c.id for c in active] == [channel.id]
    assert active[0].title == "Source"
    assert active[0].target_channel_id == "@target"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deactivate_missing_channel(repository):
    with pytest.raises(ChannelNotFoundError):
        await repository.deactivate_channel(999)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_watermark_never_decreases(repository):
    channel = await repository.upsert_channel("source_channel")

    assert await repository.get_watermark(channel.id) is None
    assert await repository.set_watermark(channel.id, 100) is True
    assert await repository.set_watermark(channel.id, 50) is False
    assert await repository.set_watermark(channel.id, 100) is False
    assert await repository.get_watermark(channel.id) == 100
    assert await repository.set_watermark(channel.id, 120) is True
    assert await repository.get_watermark(channel.id) == 120
    assert await repository.set_watermark(channel.id, None) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_upsert_post_is_idempotent(repository):
    """Повторная вставка того же сообщения не создает второй пост."""
    channel = await repository.upsert_channel("source_channel")
    entities = [EntityRange(0, 5, "bold")]

    post, created = await repository.upsert_post(channel.id, 10, "Hello world", entities)
    again, created_again = await repository.upsert_post(channel.id, 10, "Другой текст", [])

    assert created is True
    assert created_again is False
    assert again.id == post.id
    assert again.original_text == "Hello world"
    assert again.entity_ranges == entities
    assert await repository.get_max_message_id(channel.id) == 10


@pytest.mark.asyncio
@pytest.mark.unit
async def test_upsert_post_historical_flag_only_cleared(repository):
    channel = await repository.upsert_channel("source_channel")

    post, _ = await repository.upsert_post(channel.id, 10, "text", is_historical=True)
    assert post.is_historical is True

    live, _ = await repository.upsert_post(channel.id, 10, "text", is_historical=False)
    assert live.is_historical is False

    backfill, _ = await repository.upsert_post(channel.id, 10, "text", is_historical=True)
    assert backfill.is_historical is False
    assert (await repository.get_post(post.id)).is_historical is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_translation_and_status(repository):
    channel = await repository.upsert_channel("source_channel")
    post, _ = await repository.upsert_post(channel.id, 1, "text")

    assert [p.id for p in await repository.get_untranslated_posts(channel.id)] == [post.id]

    await repository.update_translation(post.id, "переклад")
    await repository.update_status(post.id, PostStatus.PUBLISHED)

    stored = await repository.get_post(post.id)
    assert stored.translated_text == "переклад"
    assert stored.status == "PUBLISHED"
    assert stored.published_at is not None
    assert stored.channel.username == "source_channel"
    assert await repository.get_untranslated_posts(channel.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_missing_post(repository):
    with pytest.raises(PostNotFoundError):
        await repository.update_status(404, PostStatus.APPROVED)
    with pytest.raises(PostNotFoundError):
        await repository.update_translation(404, "x")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_media_rows(repository):
    channel = await repository.upsert_channel("source_channel")
    post, _ = await repository.upsert_post(channel.id, 1, "text")

    first = await repository.create_media(post.id, "photo", "1/1/photo_1.jpg", "photo_1.jpg", "image/jpeg")
    await repository.create_media(post.id, "video", "1/1/video_2.mp4")

    media = await repository.get_media_by_post(post.id)
    assert [m.type for m in media] == ["photo", "video"]

    assert await repository.delete_media(first.id) is True
    assert await repository.delete_media(first.id) is False
    assert len(await repository.get_media_by_post(post.id)) == 1
