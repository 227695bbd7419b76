"""
Translation — renders outbound replies in the user's preferred language.

The core only depends on ``Translator.translate(text, language)``, which
must never raise: any failure degrades to the original English text.
``GeminiTranslator`` uses Google GenAI with a small retry loop and an
in-process cache; ``NullTranslator`` is used when no API key is set.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any

from google import genai

from healthbot.gateway.languages import DEFAULT_LANGUAGE, is_supported

logger = logging.getLogger("gateway.translation")

TRANSLATION_PROMPT = """Translate the following health-assistant message from English to {language}.

Rules:
- Keep phone numbers, times (e.g. 09:00), numbers, emoji and bullet markers unchanged.
- Keep the words TAKEN, SKIP, SNOOZE and INFO in English.
- Use simple, everyday words a patient would understand.
- Return ONLY the translated message, no notes or quotes.

Message:
{text}"""


class Translator(ABC):
    """Abstract translation backend."""

    @abstractmethod
    async def translate(self, text: str, language: str) -> str:
        """Translate English ``text`` into ``language``. Never raises."""


class NullTranslator(Translator):
    """Returns text unchanged."""

    async def translate(self, text: str, language: str) -> str:
        return text


async def llm_generate(
    client: Any,
    model: str,
    contents: str,
    max_retries: int = 2,
    base_backoff: float = 0.5,
) -> str | None:
    """
    Call the LLM with retry and exponential backoff (0.5s, 1.0s, ...).

    Returns the response text, or None once every attempt has failed so
    the caller can fall back.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=contents,
            )
            text = response.text
            if isinstance(text, str) and text.strip():
                return text
            logger.warning("LLM returned empty response (attempt %d)", attempt + 1)
        except Exception as exc:
            logger.warning(
                "LLM call failed (attempt %d/%d): %s",
                attempt + 1, max_retries + 1, exc,
            )

        if attempt < max_retries:
            await asyncio.sleep(base_backoff * (2 ** attempt))

    logger.error("LLM call exhausted all %d attempts", max_retries + 1)
    return None


class GeminiTranslator(Translator):
    """Translates replies with a Gemini model."""

    MAX_CACHE_ENTRIES = 500

    def __init__(
        self,
        llm_client: Any = None,
        model: str | None = None,
        max_retries: int = 2,
    ) -> None:
        self._client = llm_client
        self._model_name = model or os.getenv("TRANSLATION_MODEL", "gemini-2.0-flash")
        self._max_retries = max_retries
        self._cache: OrderedDict[tuple[str, str], str] = OrderedDict()

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=os.getenv("GOOGLE_API_KEY"))
        return self._client

    async def translate(self, text: str, language: str) -> str:
        language = (language or DEFAULT_LANGUAGE).lower()
        if language == DEFAULT_LANGUAGE or not text.strip():
            return text
        if not is_supported(language):
            logger.warning("Unsupported language '%s' — sending English", language)
            return text

        key = (language, text)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        try:
            prompt = TRANSLATION_PROMPT.format(language=language.title(), text=text)
            translated = await llm_generate(
                self.client, self._model_name, prompt,
                max_retries=self._max_retries,
            )
        except Exception as exc:
            logger.error("Translation to %s failed: %s", language, exc)
            return text

        if not translated:
            return text

        translated = translated.strip()
        self._cache[key] = translated
        if len(self._cache) > self.MAX_CACHE_ENTRIES:
            self._cache.popitem(last=False)
        return translated
