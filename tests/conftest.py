"""Конфигурация pytest."""

import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

# Добавляем корень проекта в путь
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.database import Base, build_engine, build_session_maker

# Импортируем все модели, чтобы они были зарегистрированы в Base.metadata
from app.models import Channel, Post, Media  # noqa: F401
from app.db.repository import Repository

# SQLite в памяти: одно соединение на весь тест (StaticPool)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def session_maker() -> AsyncGenerator[async_sessionmaker, None]:
    """Фабрика сессий с чистой схемой на каждый тест."""
    engine = build_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_maker(engine)

    await engine.dispose()


@pytest.fixture
def repository(session_maker) -> Repository:
    return Repository(session_maker)


@pytest.fixture
def media_root(tmp_path) -> str:
    return str(tmp_path / "media")
