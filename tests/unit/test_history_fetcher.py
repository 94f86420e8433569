"""Тесты для загрузки истории и реестра загрузок."""
import asyncio
import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.core.fetch_registry import FetchRegistry, stream_history_fetch
from app.core.history_fetcher import FetchProgress, HistoryFetcher
from app.utils.exceptions import FetchAlreadyRunningError
from tests.fakes import FakeConnection, make_message


def _history(count: int):
    """count сообщений (больший id новее), у каждого третьего нет текста."""
    return [
        make_message(i, text=None if i % 3 == 0 else f"post {i}", age=timedelta(hours=count - i + 1))
        for i in range(1, count + 1)
    ]


@pytest.mark.unit
def test_fetch_progress_json_omits_empty_error():
    assert json.loads(FetchProgress(fetched=1, saved=1).to_json()) == {
        "fetched": 1, "saved": 1, "skipped": 0, "done": False,
    }
    assert json.loads(FetchProgress(done=True, error="boom").to_json())["error"] == "boom"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_reports_progress_at_cadence(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    fetcher = HistoryFetcher(FakeConnection(_history(45)), repository, progress_interval=20, media_root=media_root)
    snapshots = []

    result = await fetcher.fetch(channel.id, channel.username, on_progress=snapshots.append)

    assert [s.fetched for s in snapshots] == [20, 40, 45]
    assert [s.done for s in snapshots] == [False, False, True]
    assert result.fetched == 45
    assert result.skipped == 15
    assert result.saved == 30
    assert result.error is None
    # счетчики не убывают
    for earlier, later in zip(snapshots, snapshots[1:]):
        assert later.fetched >= earlier.fetched
        assert later.saved >= earlier.saved


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_saves_historical_without_translation(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    fetcher = HistoryFetcher(FakeConnection(_history(4)), repository, media_root=media_root)

    await fetcher.fetch(channel.id, channel.username)

    posts = await repository.get_untranslated_posts(channel.id)
    assert [p.telegram_msg_id for p in posts] == [1, 2, 4]
    assert all(p.is_historical for p in posts)
    assert all(p.translated_text is None for p in posts)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_existing_posts_count_as_saved(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    await repository.upsert_post(channel.id, 1, "post 1")
    fetcher = HistoryFetcher(FakeConnection(_history(2)), repository, media_root=media_root)

    result = await fetcher.fetch(channel.id, channel.username)

    assert result.saved == 2
    assert (await repository.get_max_message_id(channel.id)) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_stops_at_since(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    fetcher = HistoryFetcher(FakeConnection(_history(10)), repository, media_root=media_root)

    result = await fetcher.fetch(
        channel.id, channel.username, since=datetime.utcnow() - timedelta(hours=4, minutes=30)
    )

    # четыре самых новых сообщения моложе границы, пятое уже старше
    assert result.fetched == 5
    assert result.saved == 3
    assert result.skipped == 1
    assert result.done is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_cancellation_is_cooperative(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    cancel = asyncio.Event()
    fetcher = HistoryFetcher(FakeConnection(_history(30)), repository, progress_interval=5, media_root=media_root)
    snapshots = []

    def on_progress(progress):
        snapshots.append(progress)
        if progress.fetched == 5:
            cancel.set()

    result = await fetcher.fetch(channel.id, channel.username, on_progress=on_progress, cancel_event=cancel)

    assert result.fetched == 5
    assert result.done is True
    assert snapshots[-1].done is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_error_is_reported(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    connection = FakeConnection(_history(3))
    connection.missing_channels.add("source_channel")
    snapshots = []

    result = await HistoryFetcher(connection, repository, media_root=media_root).fetch(
        channel.id, channel.username, on_progress=snapshots.append
    )

    assert result.done is True
    assert "не найден" in result.error
    assert snapshots == [result]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_async_progress_callback(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    received = []

    async def on_progress(progress):
        received.append(progress.fetched)

    await HistoryFetcher(FakeConnection(_history(2)), repository, media_root=media_root).fetch(
        channel.id, channel.username, on_progress=on_progress
    )

    assert received == [2]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_registry_rejects_second_fetch_for_channel():
    registry = FetchRegistry()

    async with registry.claim(1):
        assert await registry.is_running(1) is True
        with pytest.raises(FetchAlreadyRunningError):
            await registry.acquire(1)
        # другой канал можно
        await registry.acquire(2)

    assert await registry.is_running(1) is False
    assert await registry.is_running(2) is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_registry_cancel_sets_signal():
    registry = FetchRegistry()
    event = await registry.acquire(7)

    assert await registry.cancel(7) is True
    assert event.is_set()
    assert await registry.cancel(8) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stream_history_fetch_yields_json_until_done(repository, media_root):
    channel = await repository.upsert_channel("source_channel")
    registry = FetchRegistry()
    fetcher = HistoryFetcher(FakeConnection(_history(25)), repository, progress_interval=10, media_root=media_root)

    items = [json.loads(item) async for item in stream_history_fetch(registry, fetcher, channel)]

    assert [i["fetched"] for i in items] == [10, 20, 25]
    assert items[-1]["done"] is True
    assert "error" not in items[-1]
    assert await registry.is_running(channel.id) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stream_history_fetch_closed_early_cancels(repository, media_root):
    """Потребитель ушел: загрузка отменяется, канал освобождается."""
    channel = await repository.upsert_channel("source_channel")
    registry = FetchRegistry()
    fetcher = HistoryFetcher(FakeConnection(_history(50)), repository, progress_interval=5, media_root=media_root)

    stream = stream_history_fetch(registry, fetcher, channel)
    first = json.loads(await stream.__anext__())
    await stream.aclose()

    assert first["fetched"] == 5
    assert await registry.is_running(channel.id) is False
    # из 34 сообщений с текстом сохранены только первые
    assert len(await repository.get_untranslated_posts(channel.id)) < 34


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stream_history_fetch_busy_channel():
    registry = FetchRegistry()
    channel = SimpleNamespace(id=3, username="source_channel")
    await registry.acquire(3)

    with pytest.raises(FetchAlreadyRunningError):
        async for _ in stream_history_fetch(registry, HistoryFetcher(FakeConnection(), None), channel):
            pass
