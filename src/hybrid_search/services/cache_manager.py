"""Embedding cache manager.

Owns cache key generation and shields callers from cache failures: a
degraded cache behaves like an empty one, so embedding generation always
has a path forward.
"""

import hashlib
import json
import logging
from collections.abc import Callable
from typing import Any

from hybrid_search.config import settings
from hybrid_search.degradation import DegradationEvent, log_degradation
from hybrid_search.protocols import EmbeddingCache
from hybrid_search.utils import normalize_text

logger = logging.getLogger(__name__)


class EmbeddingCacheManager:
    """Text-level facade over an EmbeddingCache backend.

    Example:
        ```python
        manager = EmbeddingCacheManager(MemoryEmbeddingCache())
        metadata = {"model": "text-embedding-3-small"}

        manager.cache_embedding("Machine learning is great", vector, metadata)
        manager.get_cached_embedding("Machine   learning is great", metadata)  # same key
        ```
    """

    def __init__(
        self,
        cache: EmbeddingCache,
        enabled: bool | None = None,
        default_ttl: int | None = None,
    ) -> None:
        """Initialize the cache manager.

        Args:
            cache: Cache backend (required).
            enabled: When False every lookup misses and writes are skipped.
                Defaults to settings.
            default_ttl: TTL for writes without one. Defaults to the backend's.
        """
        self._cache = cache
        self._enabled = settings.cache.enabled if enabled is None else enabled
        self._default_ttl = default_ttl
        self._requests = 0
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def generate_cache_key(text: str, metadata: dict[str, Any] | None = None) -> str:
        """Derive the cache key for a text and its provider metadata.

        Whitespace runs and control characters do not change the key; case
        and metadata do.

        Raises:
            ValueError: If the text is empty after normalisation
        """
        normalized = normalize_text(text)
        if not normalized:
            raise ValueError("Cannot build a cache key for empty text")
        material = normalized
        if metadata:
            material += "|" + json.dumps(metadata, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get_cached_embedding(self, text: str, metadata: dict[str, Any] | None = None) -> list[float] | None:
        if not self._enabled:
            return None
        key = self.generate_cache_key(text, metadata)
        self._requests += 1
        try:
            vector = self._cache.get(key)
        except DegradationEvent as e:
            log_degradation(logger, e)
            vector = None
        if vector is None:
            self._misses += 1
        else:
            self._hits += 1
        return vector

    def cache_embedding(
        self,
        text: str,
        vector: list[float],
        metadata: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> bool:
        if not self._enabled:
            return False
        key = self.generate_cache_key(text, metadata)
        try:
            return self._cache.set(key, vector, ttl if ttl is not None else self._default_ttl)
        except DegradationEvent as e:
            log_degradation(logger, e)
            return False

    def get_cached_embeddings_batch(
        self,
        texts: list[str],
        metadata: dict[str, Any] | None = None,
    ) -> dict[int, list[float]]:
        """Look up several texts at once.

        Returns:
            Hits keyed by position in ``texts``
        """
        if not self._enabled or not texts:
            return {}
        keys = [self.generate_cache_key(text, metadata) for text in texts]
        self._requests += len(keys)
        try:
            found = self._cache.get_multiple(keys)
        except DegradationEvent as e:
            log_degradation(logger, e)
            found = {}
        results = {i: found[key] for i, key in enumerate(keys) if key in found}
        self._hits += len(results)
        self._misses += len(keys) - len(results)
        return results

    def cache_embeddings_batch(
        self,
        texts: list[str],
        vectors: list[list[float]],
        metadata: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> bool:
        """Store several embeddings. Returns True only if all were stored.

        Raises:
            ValueError: If texts and vectors differ in length
        """
        if len(texts) != len(vectors):
            raise ValueError("texts and vectors must have the same length")
        if not self._enabled or not texts:
            return False
        items = {self.generate_cache_key(t, metadata): v for t, v in zip(texts, vectors)}
        try:
            results = self._cache.set_multiple(items, ttl if ttl is not None else self._default_ttl)
        except DegradationEvent as e:
            log_degradation(logger, e)
            return False
        return all(results.values())

    def warmup(
        self,
        texts: list[str],
        generator: Callable[[str], list[float]],
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, int]:
        """Pre-populate the cache for ``texts``.

        Args:
            texts: Texts to warm
            generator: Produces the embedding for one text
            metadata: Provider metadata used in the keys

        Returns:
            Counts of cached, failed and skipped (already cached) texts
        """
        counts = {"cached": 0, "failed": 0, "skipped": 0}
        for text in texts:
            if self.get_cached_embedding(text, metadata) is not None:
                counts["skipped"] += 1
                continue
            try:
                vector = generator(text)
            except Exception as e:
                logger.warning("Cache warmup failed for one text: %s", e)
                counts["failed"] += 1
                continue
            if self.cache_embedding(text, vector, metadata):
                counts["cached"] += 1
            else:
                counts["failed"] += 1
        logger.info("Cache warmup: %s", counts)
        return counts

    def perform_maintenance(self) -> dict[str, Any]:
        try:
            result = self._cache.maintenance()
        except DegradationEvent as e:
            log_degradation(logger, e)
            return {"success": False, "error": e.user_message}
        return {
            "success": True,
            "expired_removed": result.expired_removed,
            "evicted": result.evicted,
        }

    def invalidate(self, text: str, metadata: dict[str, Any] | None = None) -> bool:
        key = self.generate_cache_key(text, metadata)
        try:
            return self._cache.invalidate(key)
        except DegradationEvent as e:
            log_degradation(logger, e)
            return False

    def clear(self) -> bool:
        try:
            removed = self._cache.clear()
        except DegradationEvent as e:
            log_degradation(logger, e)
            return False
        logger.info("Embedding cache cleared (%d entries)", removed)
        return True

    def get_statistics(self) -> dict[str, Any]:
        try:
            stats = dict(self._cache.get_stats())
        except DegradationEvent as e:
            log_degradation(logger, e)
            stats = {"error": e.user_message}
        total = self._requests
        stats.update(
            enabled=self._enabled,
            total_requests=total,
            hit_percentage=round(self._hits / total * 100, 2) if total else 0.0,
            miss_percentage=round(self._misses / total * 100, 2) if total else 0.0,
        )
        return stats
