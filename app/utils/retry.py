"""Утилиты для повторных попыток."""
import asyncio
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from config.settings import settings
from app.utils.logger import get_logger

T = TypeVar('T')
logger = get_logger(__name__)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs
) -> T:
    """
    Повторить корутину с exponential backoff и jitter.

    Повторяются только исключения из ``retry_on``; остальные пробрасываются
    сразу. После исчерпания попыток пробрасывается последнее исключение.

    Args:
        func: Асинхронная функция
        max_attempts: Максимальное количество попыток
        base_delay: Базовая задержка в секундах
        max_delay: Максимальная задержка в секундах
        retry_on: Типы исключений, при которых делаем повтор
    """
    max_attempts = max_attempts or settings.max_retry_attempts
    base_delay = settings.retry_base_delay if base_delay is None else base_delay
    max_delay = settings.retry_max_delay if max_delay is None else max_delay
    operation = getattr(func, "__qualname__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error("retry_exhausted", operation=operation, attempts=max_attempts, error=str(e))
                raise
            delay = min(base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay), max_delay)
            logger.warning(
                "retry_attempt",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=round(delay, 2),
                error=str(e)
            )
            await asyncio.sleep(delay)
