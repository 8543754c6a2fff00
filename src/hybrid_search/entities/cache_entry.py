"""Embedding cache entry domain entity."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CacheEntry:
    """A cached embedding.

    Attributes:
        key: 64-character hex SHA-256 of the normalized text and metadata
        vector: The embedding vector
        created_at: When the entry was first written (Unix timestamp)
        last_accessed_at: Last read or write (Unix timestamp)
        expires_at: When the entry stops being served (Unix timestamp)
        hit_count: Number of hits and repeated writes
    """

    key: str
    vector: list[float]
    created_at: float
    last_accessed_at: float
    expires_at: float
    hit_count: int = 0

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class MaintenanceResult:
    """Outcome of one cache maintenance pass."""

    expired_removed: int = 0
    evicted: int = 0

    @property
    def total_removed(self) -> int:
        return self.expired_removed + self.evicted
