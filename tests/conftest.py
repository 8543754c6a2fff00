"""Shared fixtures for the hybrid search tests."""

import hashlib

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from hybrid_search.circuit_breaker import CircuitBreaker
from hybrid_search.repositories import MemoryEmbeddingCache, MemoryJobStore, MemorySearchStore
from hybrid_search.services import EmbeddingCacheManager, EmbeddingService


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbeddingProvider:
    """Deterministic provider: bag-of-words vectors over a hashed vocabulary.

    Texts sharing words get similar vectors; identical texts get identical
    ones. ``fail_on`` texts (or everything, with ``fail_all``) raise; errors in
    ``fail_next`` are raised once each, in order, before anything else.
    """

    def __init__(self, dimension: int = 16, model_name: str = "fake-embed") -> None:
        self._dimension = dimension
        self._model_name = model_name
        self.calls: list[list[str]] = []
        self.fail_all: Exception | None = None
        self.fail_on: dict[str, Exception] = {}
        self.fail_next: list[Exception] = []
        self.available = True

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def vector_for(self, text: str) -> list[float]:
        vector = np.zeros(self._dimension)
        for word in text.lower().split():
            digest = hashlib.md5(word.encode()).digest()
            vector[digest[0] % self._dimension] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return (vector / np.linalg.norm(vector)).tolist()

    def encode(self, text: str) -> list[float]:
        return self.encode_batch([text])[0]

    def encode_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_next:
            raise self.fail_next.pop(0)
        if self.fail_all is not None:
            raise self.fail_all
        for text in texts:
            if text in self.fail_on:
                raise self.fail_on[text]
        return [self.vector_for(text) for text in texts]

    def is_available(self) -> bool:
        return self.available


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def memory_cache(clock):
    return MemoryEmbeddingCache(ttl=3600, max_entries=100, cleanup_probability=0.0, clock=clock)


@pytest.fixture
def cache_manager(memory_cache):
    return EmbeddingCacheManager(memory_cache, enabled=True)


@pytest.fixture
def embedding_service(provider, cache_manager, clock):
    """Embedding service that never sleeps and trips after 3 failures."""
    return EmbeddingService(
        provider=provider,
        cache_manager=cache_manager,
        circuit_breaker=CircuitBreaker("fake", failure_threshold=3, recovery_timeout=60, clock=clock),
        max_retries=2,
        retry_delay=0.01,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def search_store():
    return MemorySearchStore()


@pytest.fixture
def job_store(clock):
    return MemoryJobStore(clock=clock)


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()
