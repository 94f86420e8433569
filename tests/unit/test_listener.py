"""Тесты для Listener."""
import pytest

from app.core.listener import ChannelListener
from app.core.translation import TranslationCoordinator
from tests.fakes import FakeConnection, FakeTranslator, make_message


async def _listener(repository, media_root, translator=None, connection=None):
    listener = ChannelListener(
        connection or FakeConnection(),
        repository,
        TranslationCoordinator(repository, translator or FakeTranslator()),
        media_root=media_root,
    )
    await listener.start()
    return listener


@pytest.mark.asyncio
@pytest.mark.unit
async def test_listener_ingests_downloads_and_translates(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    translator = FakeTranslator()
    connection = FakeConnection()
    listener = await _listener(repository, media_root, translator, connection)

    post = await listener.handle(make_message(20, caption="Фото дня", photo=True, username="Source_Channel"))

    stored = await repository.get_post(post.id)
    assert stored.channel_id == channel.id
    assert stored.is_historical is False
    assert stored.translated_text == "[uk] Фото дня"
    assert [m.file_name for m in stored.media_files] == ["photo_20.jpg"]
    assert connection.handler is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_listener_ignores_inactive_and_unknown_channels(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    await repository.deactivate_channel(channel.id)
    listener = await _listener(repository, media_root)

    assert await listener.handle(make_message(1, text="hi", username="source_channel")) is None
    assert await listener.handle(make_message(2, text="hi", username="other_channel")) is None
    assert await listener.handle(make_message(3, text="hi", username=None)) is None
    assert await repository.get_max_message_id(channel.id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_listener_skips_messages_without_text(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    listener = await _listener(repository, media_root)

    assert await listener.handle(make_message(1, photo=True)) is None
    assert await repository.get_max_message_id(channel.id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_listener_keeps_post_when_media_and_translation_fail(repository, media_root):
    """Ошибки медиа и перевода не откатывают сохранение поста."""
    channel = await repository.upsert_channel("source_channel")
    connection = FakeConnection()
    connection.failed_downloads.add(5)
    listener = await _listener(repository, media_root, FakeTranslator(fail=True), connection)

    post = await listener.handle(make_message(5, caption="text", photo=True))

    stored = await repository.get_post(post.id)
    assert stored.translated_text is None
    assert stored.media_files == []
    assert await repository.get_max_message_id(channel.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_listener_clears_historical_flag(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    backfilled, _ = await repository.upsert_post(channel.id, 9, "text", is_historical=True)
    listener = await _listener(repository, media_root)

    post = await listener.handle(make_message(9, text="text"))

    assert post.id == backfilled.id
    assert (await repository.get_post(post.id)).is_historical is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stopped_listener_ignores_events(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    connection = FakeConnection()
    listener = await _listener(repository, media_root, connection=connection)
    listener.stop()

    await connection.handler(None, make_message(1, text="hi"))

    assert await repository.get_max_message_id(channel.id) is None
