"""
Unit Tests for Response Cache

Tests TTL expiry, compute-on-miss and cache key derivation.
"""

import pytest

from ai_study_tutor.response_cache import ResponseCache, answers_fingerprint, make_cache_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, minutes: float):
        self.now += minutes * 60


class TestResponseCache:
    """Test suite for ResponseCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return ResponseCache(ttl_minutes=60, clock=clock)

    def test_hit_inside_ttl(self, cache, clock):
        cache.put("teaching:abc", "value")
        clock.advance(59)

        assert cache.get("teaching:abc") == "value"

    def test_expired_at_ttl(self, cache, clock):
        cache.put("teaching:abc", "value")
        clock.advance(60)

        assert cache.get("teaching:abc") is None
        assert cache.get_stats()["size"] == 0

    def test_missing_key(self, cache):
        assert cache.get("nothing") is None

    @pytest.mark.asyncio
    async def test_get_or_compute_runs_compute_once(self, cache):
        calls = []

        async def compute():
            calls.append(1)
            return {"text": "explanation"}

        first = await cache.get_or_compute("teaching:k", compute)
        second = await cache.get_or_compute("teaching:k", compute)

        assert first == second == {"text": "explanation"}
        assert len(calls) == 1
        assert cache.misses == 1
        assert cache.get_stats()["total_hits"] == 1

    @pytest.mark.asyncio
    async def test_get_or_compute_recomputes_after_expiry(self, cache, clock):
        calls = []

        async def compute():
            calls.append(1)
            return len(calls)

        assert await cache.get_or_compute("k", compute) == 1
        clock.advance(61)
        assert await cache.get_or_compute("k", compute) == 2

    @pytest.mark.asyncio
    async def test_rejected_values_are_not_stored(self, cache):
        calls = []

        async def compute():
            calls.append(1)
            return "bad"

        await cache.get_or_compute("k", compute, should_store=lambda v: v != "bad")
        await cache.get_or_compute("k", compute, should_store=lambda v: v != "bad")

        assert len(calls) == 2
        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_compute_error_propagates_and_stores_nothing(self, cache):
        async def compute():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await cache.get_or_compute("k", compute)

        assert cache.get("k") is None

    def test_clear(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()

        assert cache.get_stats()["size"] == 0


class TestCacheKeys:
    """Key derivation is deterministic and input-sensitive."""

    def test_same_inputs_same_key(self):
        assert make_cache_key("teaching", "Algebra", "What is x?") == make_cache_key("teaching", "Algebra", "What is x?")

    def test_changed_input_changes_key(self):
        assert make_cache_key("teaching", "Algebra", "What is x?") != make_cache_key("teaching", "Algebra", "What is y?")

    def test_operation_prefix_is_readable(self):
        assert make_cache_key("notes", "Algebra", "none").startswith("notes:")

    def test_fingerprint_ignores_order(self):
        assert answers_fingerprint([(1, "a"), (2, "b")]) == answers_fingerprint([(2, "b"), (1, "a")])

    def test_fingerprint_changes_with_answer_text(self):
        assert answers_fingerprint([(1, "x = 4")]) != answers_fingerprint([(1, "x = 5")])
