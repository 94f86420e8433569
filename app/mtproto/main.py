"""Точка входа для сервиса зеркалирования."""
import asyncio
import signal

from app.mtproto.receiver import MirrorService
from app.utils.logger import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


async def run_service() -> None:
    """Запустить сервис; SIGTERM и SIGINT останавливают его штатно."""
    service = MirrorService()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(_shutdown(service, s)))
        except NotImplementedError:
            # Windows: остается KeyboardInterrupt
            pass
    await service.run()


async def _shutdown(service: MirrorService, sig: signal.Signals) -> None:
    logger.info("shutdown_signal", signal=sig.name)
    await service.stop()


def main():
    """Главная функция для запуска сервиса."""
    try:
        asyncio.run(run_service())
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
    except Exception as e:
        logger.error("fatal_error", error=str(e))
        raise


if __name__ == "__main__":
    main()
