"""Подключение к базе данных (async SQLAlchemy)."""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config.settings import settings

# Базовый класс для моделей
Base = declarative_base()


def build_engine(url: str = None, **kwargs) -> AsyncEngine:
    """
    Создать движок для ``url`` (по умолчанию DATABASE_URL).

    Для PostgreSQL берутся размеры пула из настроек, у SQLite своего пула
    нет, ему передаются только явные ``kwargs``.
    """
    url = url or settings.database_url
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", settings.database_pool_size)
        kwargs.setdefault("max_overflow", settings.database_max_overflow)
        kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("echo", settings.environment == "development" and settings.log_level.upper() == "DEBUG")
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_maker = build_session_maker(engine)
