"""
Интерактивная авторизация MTProto как явная машина состояний.

IDLE -> CODE_SENT -> [PASSWORD_REQUIRED] -> AUTHORIZED, любая ошибка -> FAILED.

Код из Telegram и пароль 2FA приходят извне через ``submit_code`` и
``submit_password`` (например, из HTTP-обработчика), ``run()`` ждет их на
futures. Результат: session string для ``TELEGRAM_SESSION_STRING``.

Запуск из консоли::

    python -m app.mtproto.auth
"""
import asyncio
import sys
from typing import Callable, Optional

from pyrogram import Client
from pyrogram.errors import PhoneCodeExpired, PhoneCodeInvalid, PasswordHashInvalid, RPCError, SessionPasswordNeeded
from pyrogram.types import User

from app.utils.enums import AuthState
from app.utils.exceptions import AuthFlowError
from app.utils.logger import setup_logging, get_logger
from config.settings import settings

logger = get_logger(__name__)


def _default_client_factory() -> Client:
    return Client(
        settings.telegram_session_name,
        api_id=settings.telegram_api_id,
        api_hash=settings.telegram_api_hash,
        in_memory=True,
    )


class TelegramAuthFlow:
    """Пошаговый вход в аккаунт Telegram."""

    def __init__(self, phone_number: Optional[str] = None, client_factory: Callable[[], Client] = None):
        self.phone_number = phone_number or settings.telegram_phone
        self._client_factory = client_factory or _default_client_factory
        self._state = AuthState.IDLE
        self._state_changed = asyncio.Condition()
        self._code_future: Optional[asyncio.Future] = None
        self._password_future: Optional[asyncio.Future] = None
        self.error: Optional[str] = None

    @property
    def state(self) -> AuthState:
        return self._state

    async def _set_state(self, state: AuthState) -> None:
        async with self._state_changed:
            logger.info("auth_state_changed", old=self._state.value, new=state.value)
            self._state = state
            self._state_changed.notify_all()

    def _input_pending(self) -> bool:
        if self._state is AuthState.CODE_SENT:
            return self._code_future is not None and not self._code_future.done()
        if self._state is AuthState.PASSWORD_REQUIRED:
            return self._password_future is not None and not self._password_future.done()
        return False

    async def next_prompt(self) -> AuthState:
        """
        Дождаться, пока потоку понадобится ввод (код или пароль),
        либо финального состояния AUTHORIZED/FAILED.
        """
        async with self._state_changed:
            await self._state_changed.wait_for(
                lambda: self._input_pending() or self._state in (AuthState.AUTHORIZED, AuthState.FAILED)
            )
            return self._state

    def submit_code(self, code: str) -> None:
        if self._state is not AuthState.CODE_SENT or self._code_future is None or self._code_future.done():
            raise AuthFlowError(f"Код не ожидается (состояние {self._state.value})")
        self._code_future.set_result(code.strip())

    def submit_password(self, password: str) -> None:
        if (
            self._state is not AuthState.PASSWORD_REQUIRED
            or self._password_future is None
            or self._password_future.done()
        ):
            raise AuthFlowError(f"Пароль не ожидается (состояние {self._state.value})")
        self._password_future.set_result(password)

    def cancel(self) -> None:
        for future in (self._code_future, self._password_future):
            if future is not None and not future.done():
                future.cancel()

    async def run(self) -> str:
        """
        Пройти авторизацию до конца.

        Неверный код или пароль не завершают поток: состояние остается
        прежним и ожидается новый ввод.

        Returns:
            Экспортированный session string

        Raises:
            AuthFlowError: при ошибке Telegram или отмене
        """
        if self._state is not AuthState.IDLE:
            raise AuthFlowError("Авторизация уже запускалась")
        if not self.phone_number:
            raise AuthFlowError("Не задан номер телефона")

        loop = asyncio.get_running_loop()
        client = self._client_factory()
        await client.connect()
        try:
            sent_code = await client.send_code(self.phone_number)
            user = None
            while user is None:
                self._code_future = loop.create_future()
                await self._set_state(AuthState.CODE_SENT)
                code = await self._code_future
                try:
                    signed_in = await client.sign_in(self.phone_number, sent_code.phone_code_hash, code)
                except PhoneCodeInvalid:
                    logger.warning("auth_code_invalid")
                    continue
                except PhoneCodeExpired:
                    logger.warning("auth_code_expired")
                    sent_code = await client.send_code(self.phone_number)
                    continue
                except SessionPasswordNeeded:
                    user = await self._check_password(client, loop)
                    break
                if not isinstance(signed_in, User):
                    raise AuthFlowError("Номер не зарегистрирован в Telegram")
                user = signed_in

            session_string = await client.export_session_string()
            await self._set_state(AuthState.AUTHORIZED)
            logger.info("auth_completed", user_id=user.id, username=user.username)
            return session_string
        except asyncio.CancelledError:
            self.error = "cancelled"
            await self._set_state(AuthState.FAILED)
            raise AuthFlowError("Авторизация отменена")
        except RPCError as e:
            self.error = str(e)
            await self._set_state(AuthState.FAILED)
            raise AuthFlowError(f"Ошибка авторизации: {e}") from e
        except AuthFlowError as e:
            self.error = str(e)
            await self._set_state(AuthState.FAILED)
            raise
        finally:
            await client.disconnect()

    async def _check_password(self, client: Client, loop: asyncio.AbstractEventLoop) -> User:
        while True:
            self._password_future = loop.create_future()
            await self._set_state(AuthState.PASSWORD_REQUIRED)
            password = await self._password_future
            try:
                return await client.check_password(password)
            except PasswordHashInvalid:
                logger.warning("auth_password_invalid")


async def _interactive() -> int:
    flow = TelegramAuthFlow()
    task = asyncio.create_task(flow.run())
    while not task.done():
        state = await flow.next_prompt()
        if state is AuthState.CODE_SENT:
            flow.submit_code(await asyncio.to_thread(input, "Код из Telegram: "))
        elif state is AuthState.PASSWORD_REQUIRED:
            flow.submit_password(await asyncio.to_thread(input, "Пароль 2FA: "))
        else:
            break
    try:
        session_string = await task
    except AuthFlowError as e:
        print(f"❌ {e}")
        return 1
    print("\n=== Сохраните в .env как TELEGRAM_SESSION_STRING ===")
    print(session_string)
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(_interactive()))
