"""
Unit Tests for AI Gateway

Tests caching of parsed results, timeout handling and error wrapping.
"""

import pytest

from conftest import FakeChatModel

from ai_study_tutor.ai_gateway import AIGateway
from ai_study_tutor.errors import AIGatewayError, AIGatewayTimeout
from ai_study_tutor.prompt_adapter import parse_evaluation, parse_notes
from ai_study_tutor.response_cache import ResponseCache, make_cache_key


def evaluation_prompt():
    return "Student's Answer: x = 4"


class TestAIGateway:
    """Test suite for AIGateway."""

    @pytest.mark.asyncio
    async def test_identical_key_calls_model_once(self, gateway, fake_model):
        key = make_cache_key("evaluate", "What is x?", "4")

        first = await gateway.invoke(key, evaluation_prompt, parse_evaluation)
        second = await gateway.invoke(key, evaluation_prompt, parse_evaluation)

        assert first.ok and second.ok
        assert first.value.correctness == 85
        assert fake_model.calls == 1

    @pytest.mark.asyncio
    async def test_different_key_calls_model_again(self, gateway, fake_model):
        await gateway.invoke(make_cache_key("evaluate", "q", "a"), evaluation_prompt, parse_evaluation)
        await gateway.invoke(make_cache_key("evaluate", "q", "b"), evaluation_prompt, parse_evaluation)

        assert fake_model.calls == 2

    @pytest.mark.asyncio
    async def test_malformed_reply_is_not_cached(self, cache):
        model = FakeChatModel(replies=["I'd rather not say", '{"correctness": 40, "feedback": "meh"}'])
        gateway = AIGateway(model, cache, timeout_seconds=1.0)
        key = make_cache_key("evaluate", "q", "a")

        first = await gateway.invoke(key, evaluation_prompt, parse_evaluation)
        second = await gateway.invoke(key, evaluation_prompt, parse_evaluation)

        assert not first.ok
        assert second.ok and second.value.correctness == 40
        assert model.calls == 2

    @pytest.mark.asyncio
    async def test_no_key_bypasses_cache(self, gateway, fake_model):
        await gateway.invoke(None, lambda: "Generate comprehensive study notes", parse_notes)
        await gateway.invoke(None, lambda: "Generate comprehensive study notes", parse_notes)

        assert fake_model.calls == 2
        assert gateway.cache.get_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_timeout(self, cache):
        gateway = AIGateway(FakeChatModel(delay=0.5), cache, timeout_seconds=0.05)

        with pytest.raises(AIGatewayTimeout):
            await gateway.invoke("teaching:k", lambda: "teach me", parse_notes)

        assert cache.get("teaching:k") is None

    @pytest.mark.asyncio
    async def test_model_errors_are_wrapped(self, cache):
        gateway = AIGateway(FakeChatModel(replies=[ConnectionError("reset by peer")]), cache)

        with pytest.raises(AIGatewayError) as exc_info:
            await gateway.complete("hello")

        assert "reset by peer" in exc_info.value.message
        assert not isinstance(exc_info.value, AIGatewayTimeout)

    @pytest.mark.asyncio
    async def test_parser_exception_becomes_malformed(self, gateway, fake_model):
        def exploding_parse(text):
            raise OverflowError("cannot convert float infinity to integer")

        key = make_cache_key("evaluate", "q", "a")
        result = await gateway.invoke(key, evaluation_prompt, exploding_parse)

        assert not result.ok
        assert "infinity" in result.reason
        assert result.raw_text
        assert gateway.cache.get(key) is None
