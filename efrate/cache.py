"""
Response caching for LLM requests.

Provides in-memory caching keyed by normalized prompt text, with TTL,
bounded capacity and optional fuzzy matching.
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional

from .exceptions import ConfigurationError
from .similarity import calculate_similarity, normalize_prompt

logger = logging.getLogger(__name__)


@dataclass
class CacheConfig:
    """Configuration for caching."""
    max_entries: int = 1000
    ttl_ms: float = 3600000  # 1 hour default
    similarity_threshold: float = 0.95
    fuzzy_matching: bool = True

    def __post_init__(self):
        if self.max_entries < 1:
            raise ConfigurationError("max_entries must be at least 1")
        if self.ttl_ms <= 0:
            raise ConfigurationError("ttl_ms must be positive")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError("similarity_threshold must be between 0 and 1")

    def to_dict(self) -> dict:
        return {
            "max_entries": self.max_entries,
            "ttl_ms": self.ttl_ms,
            "similarity_threshold": self.similarity_threshold,
            "fuzzy_matching": self.fuzzy_matching,
        }


@dataclass
class CacheEntry:
    """A cached response."""
    key: str
    value: Any
    created_at: float  # ms

    def is_expired(self, now_ms: float, ttl_ms: float) -> bool:
        return now_ms - self.created_at >= ttl_ms


@dataclass
class CacheStats:
    """Cache statistics."""
    exact_hits: int = 0
    fuzzy_hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    entries: int = 0

    @property
    def hits(self) -> int:
        return self.exact_hits + self.fuzzy_hits

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "exact_hits": self.exact_hits,
            "fuzzy_hits": self.fuzzy_hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "entries": self.entries,
            "hit_rate": round(self.hit_rate, 4),
        }


class ResponseCache:
    """
    In-memory prompt cache with TTL and oldest-first eviction.

    Keys are normalized prompts, so lookups ignore case and whitespace.
    When fuzzy matching is enabled, a lookup that misses exactly returns the
    first live entry (in insertion order) whose similarity to the prompt
    reaches the configured threshold. This is not necessarily the closest
    entry.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._lock = Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def lookup(self, prompt: str) -> Optional[Any]:
        """
        Look up a cached value for a prompt.

        Args:
            prompt: Raw prompt text

        Returns:
            Cached value, or None on a miss
        """
        key = normalize_prompt(prompt)

        with self._lock:
            now = self._now_ms()
            entry = self._cache.get(key)

            if entry is not None:
                if not entry.is_expired(now, self.config.ttl_ms):
                    self._stats.exact_hits += 1
                    logger.debug("Exact cache hit for %r", key[:50])
                    return entry.value
                del self._cache[key]
                self._stats.expirations += 1

            if self.config.fuzzy_matching and self.config.similarity_threshold < 1.0:
                for candidate_key, candidate in list(self._cache.items()):
                    if candidate.is_expired(now, self.config.ttl_ms):
                        del self._cache[candidate_key]
                        self._stats.expirations += 1
                        continue

                    score = calculate_similarity(key, candidate_key)
                    if score >= self.config.similarity_threshold:
                        self._stats.fuzzy_hits += 1
                        logger.debug(
                            "Fuzzy cache hit for %r (similarity %.3f)",
                            key[:50], score,
                        )
                        return candidate.value

            self._stats.misses += 1
            logger.debug("Cache miss for %r", key[:50])
            return None

    def store(self, prompt: str, value: Any) -> None:
        """Store a value for a prompt, evicting the oldest entry when full."""
        key = normalize_prompt(prompt)

        with self._lock:
            if len(self._cache) >= self.config.max_entries and key not in self._cache:
                self._evict_oldest()

            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._now_ms(),
            )

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._stats = CacheStats()

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        with self._lock:
            now = self._now_ms()
            expired = [
                k for k, v in self._cache.items()
                if v.is_expired(now, self.config.ttl_ms)
            ]
            for k in expired:
                del self._cache[k]
            self._stats.expirations += len(expired)
            return len(expired)

    @property
    def size(self) -> int:
        """Number of stored entries, including expired ones not yet purged."""
        with self._lock:
            return len(self._cache)

    def __len__(self) -> int:
        return self.size

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                exact_hits=self._stats.exact_hits,
                fuzzy_hits=self._stats.fuzzy_hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                entries=len(self._cache),
            )

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest creation time."""
        if not self._cache:
            return

        oldest = min(self._cache, key=lambda k: self._cache[k].created_at)
        del self._cache[oldest]
        self._stats.evictions += 1
        logger.debug("Evicted oldest cache entry %r", oldest[:50])
