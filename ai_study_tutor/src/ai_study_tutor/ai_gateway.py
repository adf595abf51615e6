"""
AI Gateway

Single entry point for every model call. Combines:
- a per-call timeout (asyncio.wait_for)
- the ResponseCache (parsed results only, never malformed ones)
- the operation's PromptAdapter parser

The chat model itself is a small object with one coroutine,
`generate(prompt) -> str`, so tests can swap in a scripted fake.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from openai import AsyncOpenAI

from ai_study_tutor.config import Settings
from ai_study_tutor.errors import AIGatewayError, AIGatewayTimeout
from ai_study_tutor.prompt_adapter import Malformed, ParseResult
from ai_study_tutor.response_cache import ResponseCache

logger = logging.getLogger(__name__)


class OpenAIChatModel:
    """Chat-completions backed text model."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        max_tokens: int = 1024,
        temperature: float = 0.7
    ):
        self.llm_client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIChatModel":
        return cls(
            api_key=settings.require_api_key(),
            model=settings.openai_model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )

    async def generate(self, prompt: str) -> str:
        response = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You are a patient, accurate educational assistant."},
                {"role": "user", "content": prompt}
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature
        )
        return response.choices[0].message.content or ""


class AIGateway:
    """
    Timeout + cache + parse wrapper around a chat model.

    invoke() raises AIGatewayTimeout / AIGatewayError on transport failures;
    a reply that cannot be parsed comes back as a Malformed result instead.
    """

    def __init__(self, model, cache: ResponseCache, timeout_seconds: float = 15.0):
        self.model = model
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.calls = 0

    async def complete(self, prompt: str, label: str = "ai") -> str:
        """Run one uncached model call under the timeout."""
        self.calls += 1
        start = time.time()
        try:
            text = await asyncio.wait_for(self.model.generate(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ [AIGateway] {label} timed out after {self.timeout_seconds}s")
            raise AIGatewayTimeout(f"AI request timed out after {self.timeout_seconds}s")
        except AIGatewayError:
            raise
        except Exception as e:
            logger.error(f"❌ [AIGateway] {label} failed: {e}")
            raise AIGatewayError(f"AI request failed: {e}") from e

        elapsed = (time.time() - start) * 1000
        logger.info(f"🤖 [AIGateway] {label} completed in {elapsed:.0f}ms ({len(text)} chars)")
        return text

    async def invoke(
        self,
        cache_key: Optional[str],
        build_prompt: Callable[[], str],
        parse: Callable[[str], ParseResult]
    ) -> ParseResult:
        """
        Return the parsed result for cache_key, calling the model on a miss.

        Args:
            cache_key: Key from make_cache_key, or None to bypass the cache
            build_prompt: Builds the prompt (only called on a miss)
            parse: PromptAdapter parser for this operation

        Returns:
            Ok(value) or Malformed(raw_text, reason)
        """
        label = cache_key.split(":", 1)[0] if cache_key else "ai"

        async def compute() -> ParseResult:
            text = await self.complete(build_prompt(), label=label)
            try:
                result = parse(text)
            except Exception as e:
                logger.error(f"❌ [AIGateway] {label} parser raised {type(e).__name__}: {e}")
                result = Malformed(raw_text=text, reason=f"parser error: {e}")
            if not result.ok:
                logger.warning(f"⚠️ [AIGateway] {label} reply malformed: {result.reason}")
            return result

        if cache_key is None:
            return await compute()
        return await self.cache.get_or_compute(cache_key, compute, should_store=lambda r: r.ok)
