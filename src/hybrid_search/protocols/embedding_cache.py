"""Embedding cache protocol.

Defines the interface for content-addressable embedding storage. Keys are
64-character hex SHA-256 digests produced by the cache manager; the cache
itself never generates embeddings.

Implementations:
- SQL table through SQLAlchemy (durable, shared between workers)
- In-process dictionary (volatile, per worker)
"""

from typing import Protocol, runtime_checkable

from hybrid_search.entities import MaintenanceResult


@runtime_checkable
class EmbeddingCache(Protocol):
    """Protocol for embedding cache backends.

    Backends raise ``ValueError`` for malformed keys and a CACHE_DEGRADED
    ``DegradationEvent`` when the underlying storage fails.
    """

    def get(self, key: str) -> list[float] | None:
        """Return the cached vector, refreshing its access time and hit count.

        Args:
            key: 64-character hex cache key

        Returns:
            The vector, or None on a miss or an expired entry
        """
        ...

    def set(self, key: str, vector: list[float], ttl: int | None = None) -> bool:
        """Store a vector, replacing any existing one.

        Args:
            key: 64-character hex cache key
            vector: 1 to 16000 finite floats
            ttl: Time-to-live in seconds. Defaults to the backend TTL.

        Returns:
            True if stored, False if the vector was rejected
        """
        ...

    def get_multiple(self, keys: list[str]) -> dict[str, list[float]]:
        """Return hits only, keyed by cache key."""
        ...

    def set_multiple(self, items: dict[str, list[float]], ttl: int | None = None) -> dict[str, bool]:
        """Store several vectors. One rejected entry never aborts the rest."""
        ...

    def invalidate(self, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        ...

    def clear(self) -> int:
        """Delete everything. Returns the number of entries removed."""
        ...

    def maintenance(self) -> MaintenanceResult:
        """Remove expired entries, then evict least recently used ones over capacity."""
        ...

    def get_stats(self) -> dict:
        """Return hits, misses, sets, invalidations, total_entries, expired_entries, hit_rate."""
        ...
