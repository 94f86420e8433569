"""Тесты для сохранения сообщений и извлечения чистого текста."""
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from unittest.mock import Mock

from app.core.ingestion import ingest, ingest_message, message_date, message_entities, message_text
from app.utils.text_formatter import EntityRange
from tests.fakes import make_message


def _bold(offset, length):
    entity = Mock()
    entity.type.name = "BOLD"
    entity.offset, entity.length = offset, length
    return entity


@pytest.mark.unit
def test_message_text_prefers_text_then_caption():
    assert message_text(make_message(1, text="hello")) == "hello"
    assert message_text(make_message(1, caption="photo caption", photo=True)) == "photo caption"
    assert message_text(make_message(1, photo=True)) == ""


@pytest.mark.unit
def test_message_text_is_plain_str():
    """Подкласс str (как pyrogram Str) приводится к обычной строке."""
    class Str(str):
        pass

    result = message_text(SimpleNamespace(text=Str("hi"), caption=None))
    assert type(result) is str
    assert result == "hi"


@pytest.mark.unit
def test_message_entities_follow_text_source():
    with_text = make_message(1, text="Hello", entities=[_bold(0, 5)])
    with_caption = make_message(2, caption="Hello", entities=[_bold(0, 2)], photo=True)

    assert message_entities(with_text) == [EntityRange(0, 5, "bold")]
    assert message_entities(with_caption) == [EntityRange(0, 2, "bold")]


@pytest.mark.unit
def test_message_date_is_naive_utc():
    aware = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert message_date(SimpleNamespace(date=aware)) == datetime(2026, 1, 2, 3, 4, 5)
    assert message_date(SimpleNamespace(date=0)) == datetime(1970, 1, 1)
    assert message_date(SimpleNamespace(date=None)) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ingest_twice_creates_one_post(repository):
    channel = await repository.upsert_channel("source_channel")

    first, created = await ingest(repository, channel.id, 5, "text", is_historical=True)
    second, created_again = await ingest(repository, channel.id, 5, "text", is_historical=False)
    third, _ = await ingest(repository, channel.id, 5, "text", is_historical=True)

    assert created is True and created_again is False
    assert first.id == second.id == third.id
    assert second.is_historical is False
    assert third.is_historical is False
    assert len(await repository.get_untranslated_posts(channel.id)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ingest_message_skips_empty_text(repository):
    channel = await repository.upsert_channel("source_channel")

    assert await ingest_message(repository, channel.id, make_message(1, text="   "), False) is None
    assert await ingest_message(repository, channel.id, make_message(2, photo=True), False) is None
    assert await repository.get_max_message_id(channel.id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ingest_message_stores_clean_text_and_entities(repository):
    channel = await repository.upsert_channel("source_channel")
    message = make_message(7, text="Hello world", entities=[_bold(0, 5)])

    post, created = await ingest_message(repository, channel.id, message, is_historical=False)

    stored = await repository.get_post(post.id)
    assert created is True
    assert stored.original_text == "Hello world"
    assert stored.entity_ranges == [EntityRange(0, 5, "bold")]
    assert stored.telegram_msg_id == 7
    assert stored.created_at.tzinfo is None
