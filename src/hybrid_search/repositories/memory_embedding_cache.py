"""In-process implementation of EmbeddingCache.

Entries live in a dictionary owned by one worker process. Nothing is shared
between processes and everything is lost on restart, which makes this
backend a good fit for tests and short-lived CLI runs.
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import replace

from hybrid_search.config import settings
from hybrid_search.entities import CacheEntry, MaintenanceResult
from hybrid_search.utils import validate_cache_key, vector_problem

logger = logging.getLogger(__name__)


class MemoryEmbeddingCache:
    """Dictionary-backed embedding cache.

    This class satisfies the EmbeddingCache protocol through structural
    typing - no explicit inheritance needed.
    """

    def __init__(
        self,
        ttl: int = 3600,
        max_entries: int = 1000,
        cleanup_probability: float | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the in-process cache.

        Args:
            ttl: Default time-to-live in seconds.
            max_entries: Capacity enforced by maintenance().
            cleanup_probability: Chance that a write triggers maintenance.
                Defaults to settings.
            clock: Returns the current Unix time.
            rng: Random source for probabilistic maintenance.
        """
        self._ttl = ttl
        self._max_entries = max_entries
        self._cleanup_probability = (
            settings.cache.cleanup_probability if cleanup_probability is None else cleanup_probability
        )
        self._clock = clock
        self._rng = rng or random.Random()
        self._entries: dict[str, CacheEntry] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "invalidations": 0}

    def get(self, key: str) -> list[float] | None:
        validate_cache_key(key)
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(now):
            self._stats["misses"] += 1
            return None
        self._entries[key] = replace(entry, last_accessed_at=now, hit_count=entry.hit_count + 1)
        self._stats["hits"] += 1
        return list(entry.vector)

    def set(self, key: str, vector: list[float], ttl: int | None = None) -> bool:
        validate_cache_key(key)
        problem = vector_problem(vector)
        if problem:
            logger.warning("Refusing to cache embedding %s: %s", key[:12], problem)
            return False

        now = self._clock()
        expires_at = now + (ttl if ttl is not None else self._ttl)
        existing = self._entries.get(key)
        if existing is None:
            entry = CacheEntry(key, [float(v) for v in vector], now, now, expires_at, 0)
        else:
            entry = replace(
                existing,
                vector=[float(v) for v in vector],
                last_accessed_at=now,
                expires_at=expires_at,
                hit_count=existing.hit_count + 1,
            )
        self._entries[key] = entry
        self._stats["sets"] += 1

        if self._rng.random() < self._cleanup_probability:
            self.maintenance()
        return True

    def get_multiple(self, keys: list[str]) -> dict[str, list[float]]:
        results: dict[str, list[float]] = {}
        for key in keys:
            try:
                vector = self.get(key)
            except ValueError as e:
                logger.warning("Skipping cache lookup: %s", e)
                continue
            if vector is not None:
                results[key] = vector
        return results

    def set_multiple(self, items: dict[str, list[float]], ttl: int | None = None) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for key, vector in items.items():
            try:
                results[key] = self.set(key, vector, ttl)
            except ValueError as e:
                logger.warning("Skipping cache entry: %s", e)
                results[key] = False
        return results

    def invalidate(self, key: str) -> bool:
        validate_cache_key(key)
        if self._entries.pop(key, None) is None:
            return False
        self._stats["invalidations"] += 1
        return True

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def maintenance(self) -> MaintenanceResult:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        evicted = 0
        excess = len(self._entries) - self._max_entries
        if excess > 0:
            victims = sorted(
                self._entries.values(),
                key=lambda e: (e.last_accessed_at, e.hit_count),
            )[:excess]
            for entry in victims:
                del self._entries[entry.key]
            evicted = len(victims)

        if expired or evicted:
            logger.debug("Cache maintenance removed %d expired, evicted %d", len(expired), evicted)
        return MaintenanceResult(expired_removed=len(expired), evicted=evicted)

    def get_stats(self) -> dict:
        now = self._clock()
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "backend": "memory",
            "total_entries": len(self._entries),
            "expired_entries": sum(1 for e in self._entries.values() if e.is_expired(now)),
            "max_entries": self._max_entries,
            "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
        }
