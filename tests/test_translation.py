"""
Tests for outbound translation and language detection.
"""

from types import SimpleNamespace

import pytest

from healthbot.gateway.languages import detect_language, is_supported, language_code
from healthbot.gateway.translation import GeminiTranslator, NullTranslator, llm_generate


class FakeModels:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def generate_content(self, model, contents):
        self.calls.append(contents)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


def fake_client(*replies):
    models = FakeModels(replies)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


class TestLanguages:

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("मुझे बुखार है", "hindi"),
            ("எனக்கு காய்ச்சல்", "tamil"),
            ("I have a fever", "english"),
            ("", "english"),
        ],
    )
    def test_detect_language(self, text, expected):
        assert detect_language(text) == expected

    def test_supported_languages(self):
        assert is_supported("Hindi")
        assert not is_supported("klingon")
        assert language_code("tamil") == "ta"
        assert language_code("klingon") == "en"


class TestGeminiTranslator:

    @pytest.mark.asyncio
    async def test_english_passthrough(self):
        client, models = fake_client()
        translator = GeminiTranslator(llm_client=client)
        assert await translator.translate("Hello", "english") == "Hello"
        assert models.calls == []

    @pytest.mark.asyncio
    async def test_translates_and_caches(self):
        client, models = fake_client(" नमस्ते \n")
        translator = GeminiTranslator(llm_client=client, max_retries=0)
        assert await translator.translate("Hello", "hindi") == "नमस्ते"
        assert await translator.translate("Hello", "hindi") == "नमस्ते"
        assert len(models.calls) == 1
        assert "Hindi" in models.calls[0]

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_english(self):
        client, _ = fake_client(RuntimeError("quota"))
        translator = GeminiTranslator(llm_client=client, max_retries=0)
        assert await translator.translate("Call 112", "hindi") == "Call 112"

    @pytest.mark.asyncio
    async def test_unsupported_language_falls_back(self):
        client, models = fake_client()
        translator = GeminiTranslator(llm_client=client)
        assert await translator.translate("Hello", "klingon") == "Hello"
        assert models.calls == []

    @pytest.mark.asyncio
    async def test_null_translator(self):
        assert await NullTranslator().translate("Hello", "hindi") == "Hello"


class TestLLMGenerate:

    @pytest.mark.asyncio
    async def test_retries_after_empty_reply(self):
        client, models = fake_client("", "ok")
        assert await llm_generate(client, "m", "prompt", max_retries=1, base_backoff=0) == "ok"
        assert len(models.calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_returns_none(self):
        client, _ = fake_client(RuntimeError("a"), RuntimeError("b"))
        assert await llm_generate(client, "m", "prompt", max_retries=1, base_backoff=0) is None
