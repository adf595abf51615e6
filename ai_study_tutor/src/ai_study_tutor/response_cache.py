"""
AI Response Caching

TTL cache for parsed AI outputs, keyed by a deterministic hash of the request
parameters. Identical inputs inside the TTL window reuse the stored value;
any change to the inputs changes the key.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    """Cached response entry."""
    value: Any
    stored_at: float
    hit_count: int = 0


def make_cache_key(operation: str, *parts: Any) -> str:
    """
    Build a cache key from an operation name and its relevant inputs.

    The operation stays readable in logs; the inputs are hashed so long
    question texts and answers do not bloat the key.
    """
    normalized = "\x1f".join(str(p).strip() for p in parts)
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]
    return f"{operation}:{digest}"


def answers_fingerprint(pairs: Iterable[Tuple[int, str]]) -> str:
    """Short fingerprint of a set of (question_id, user_answer) pairs."""
    h = hashlib.sha256()
    for question_id, user_answer in sorted(pairs, key=lambda p: p[0]):
        h.update(f"{question_id}\x1e{user_answer}\x1d".encode("utf-8"))
    return h.hexdigest()[:16]


class ResponseCache:
    """
    TTL key-value cache for AI outputs.

    A read is a hit iff the entry is younger than the TTL. There is no size
    bound and no de-duplication of concurrent misses for the same key: two
    concurrent misses both compute and the last writer wins.
    """

    def __init__(
        self,
        ttl_minutes: float = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize response cache.

        Args:
            ttl_minutes: Time-to-live for cache entries (minutes)
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.ttl_seconds = ttl_minutes * 60
        self._clock = clock
        self.cache: Dict[str, CachedResponse] = {}
        self.misses = 0

    def _is_fresh(self, entry: CachedResponse) -> bool:
        return self._clock() - entry.stored_at < self.ttl_seconds

    def _cleanup_expired(self):
        """Remove expired cache entries."""
        expired_keys = [key for key, entry in self.cache.items() if not self._is_fresh(entry)]
        for key in expired_keys:
            del self.cache[key]

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value if a fresh entry exists.

        Args:
            key: Cache key

        Returns:
            Cached value if found and fresh, None otherwise
        """
        entry = self.cache.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            del self.cache[key]
            return None
        entry.hit_count += 1
        return entry.value

    def put(self, key: str, value: Any):
        """Store a value under key, replacing any previous entry."""
        self._cleanup_expired()
        self.cache[key] = CachedResponse(
            value=value,
            stored_at=self._clock()
        )

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        should_store: Optional[Callable[[Any], bool]] = None
    ) -> Any:
        """
        Return the fresh cached value for key, or run compute once and store it.

        Args:
            key: Cache key
            compute: Coroutine factory producing the value on a miss
            should_store: Optional predicate; values it rejects are returned
                but not cached

        Exceptions raised by compute propagate and nothing is stored.
        """
        cached = self.get(key)
        if cached is not None:
            logger.info(f"⚡ [ResponseCache] Hit: {key}")
            return cached

        self.misses += 1
        logger.info(f"🔄 [ResponseCache] Miss: {key}")
        value = await compute()
        if should_store is None or should_store(value):
            self.put(key, value)
        return value

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        total_hits = sum(entry.hit_count for entry in self.cache.values())
        return {
            "size": len(self.cache),
            "total_hits": total_hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }

    def clear(self):
        """Clear all cache entries."""
        self.cache.clear()
