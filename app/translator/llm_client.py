"""Клиент LLM для перевода постов (OpenAI-совместимый API)."""
from typing import Optional

import httpx

from app.utils.exceptions import APIError, TranslationError
from app.utils.logger import get_logger
from app.utils.retry import retry_with_backoff
from config.settings import settings

logger = get_logger(__name__)

ALLOWED_TAGS = """<b>bold</b>
<i>italic</i>
<u>underline</u>
<s>strikethrough</s>
<spoiler>spoiler</spoiler>
<code>inline code</code>
<pre>code block</pre>
<pre><code class="language-python">code block with language</code></pre>
<a href="url">link</a>
<blockquote>quote</blockquote>"""

TRANSLATE_PROMPT = """You are a professional translator. Translate the text into literary {language}.

The text may contain Telegram HTML markup. The complete list of allowed tags:
{tags}

CRITICAL markup rules:
- KEEP ALL HTML tags EXACTLY as they are: do not remove them, do not add new ones, do not change attributes
- Every opening tag MUST have a matching closing tag
- Tags must wrap the same meaningful fragments as in the original
- If the original has NO HTML tags, do NOT add them to the translation

Translation rules:
- Do NOT translate the contents of <code> and <pre>
- Do NOT translate prompts for AI/LLM, keep them in the original language
- Do NOT translate URLs, @usernames, #hashtags, names of technologies, libraries, functions
- Keep the paragraph structure of the original
- Return ONLY the translated text without explanations"""

VERIFY_PROMPT = """You are an editor verifying translations of Telegram posts into {language}.

Allowed HTML tags: <b>, <i>, <u>, <s>, <spoiler>, <code>, <pre>, <a href="...">, <blockquote>.

You are given the original and the translation. Check and fix:

1. HTML tags:
   - All tags of the original are PRESERVED (none removed, none added)
   - Every tag is properly CLOSED
   - If the original had NO tags, the translation must have none either

2. Untranslated content:
   - Code in <code>/<pre> is unchanged
   - URLs, @usernames, #hashtags are unchanged
   - Names of technologies are unchanged

3. Quality: the translation is accurate, literary, the paragraph structure is preserved

Return ONLY the final translated text. No explanations, comments or notes."""


class LLMTranslator:
    """Перевод и верификация перевода через chat completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        fallback_base_url: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        fallback = fallback_base_url if fallback_base_url is not None else settings.llm_fallback_base_url
        self.fallback_base_url = fallback.rstrip("/") if fallback else None
        self.model = model or settings.llm_model
        self.language = language or settings.translation_target_language
        self.max_attempts = max_attempts or settings.max_retry_attempts
        self.client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key or settings.llm_api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.llm_timeout_seconds,
            transport=transport,
        )

    async def close(self):
        """Закрыть HTTP клиент."""
        await self.client.aclose()

    async def _post_completion(self, base_url: str, payload: dict) -> dict:
        response = await self.client.post(f"{base_url}/chat/completions", json=payload)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            # 200 с HTML-страницей шлюза и т.п.
            raise APIError(
                f"Некорректный ответ LLM API: {e}",
                status_code=response.status_code,
            ) from e

    async def _complete(self, base_url: str, system: str, user: str, temperature: float) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
        }
        try:
            data = await retry_with_backoff(
                self._post_completion,
                base_url,
                payload,
                max_attempts=self.max_attempts,
                retry_on=(httpx.HTTPError,),
            )
        except httpx.HTTPStatusError as e:
            logger.error("llm_request_failed", base_url=base_url, status_code=e.response.status_code, error=str(e))
            try:
                body = e.response.json()
            except ValueError:
                body = None
            raise APIError(
                f"HTTP ошибка LLM API: {e.response.status_code}",
                status_code=e.response.status_code,
                response=body,
            )
        except httpx.HTTPError as e:
            logger.error("llm_request_failed", base_url=base_url, error=str(e))
            raise APIError(f"Ошибка сети при обращении к LLM API: {e}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        result = (content or "").strip()
        if not result:
            raise TranslationError("Пустой ответ LLM")
        return result

    async def _chat(self, system: str, user: str, temperature: float) -> str:
        try:
            return await self._complete(self.base_url, system, user, temperature)
        except APIError as e:
            if not self.fallback_base_url or self.fallback_base_url == self.base_url:
                raise
            logger.warning("llm_fallback", primary=self.base_url, fallback=self.fallback_base_url, error=str(e))
            return await self._complete(self.fallback_base_url, system, user, temperature)

    async def translate(self, text: str) -> str:
        """
        Перевести текст в Telegram HTML.

        Raises:
            APIError: если оба адреса API недоступны
            TranslationError: если модель вернула пустой ответ
        """
        system = TRANSLATE_PROMPT.format(language=self.language, tags=ALLOWED_TAGS)
        return await self._chat(system, text, temperature=0.3)

    async def verify(self, original: str, translated: str) -> str:
        """Проверить и исправить перевод (теги, непереводимые фрагменты)."""
        system = VERIFY_PROMPT.format(language=self.language)
        prompt = f"ORIGINAL:\n{original}\n\nTRANSLATION:\n{translated}"
        return await self._chat(system, prompt, temperature=0.1)
