"""
Tests for the embedding cache backends and the cache manager.
"""

import random

import pytest
from sqlalchemy import select, text, update

from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.repositories import DatabaseEmbeddingCache, MemoryEmbeddingCache
from hybrid_search.repositories.database_embedding_cache import decode_vector, encode_vector
from hybrid_search.services import EmbeddingCacheManager, EmbeddingService

KEY_A = "a" * 64
KEY_B = "b" * 64
KEY_C = "c" * 64


@pytest.fixture(params=["memory", "database"])
def cache(request, clock, sqlite_engine):
    """Both backends, configured identically."""
    if request.param == "memory":
        return MemoryEmbeddingCache(ttl=3600, max_entries=2, cleanup_probability=0.0, clock=clock)
    return DatabaseEmbeddingCache(
        sqlite_engine,
        table_name="embedding_cache",
        ttl=3600,
        max_entries=2,
        cleanup_probability=0.0,
        compression=True,
        clock=clock,
    )


class TestEmbeddingCacheBackends:
    """Behaviour shared by every EmbeddingCache backend."""

    def test_set_then_get(self, cache):
        assert cache.set(KEY_A, [0.1, 0.2, 0.3]) is True
        assert cache.get(KEY_A) == pytest.approx([0.1, 0.2, 0.3])

    def test_miss(self, cache):
        assert cache.get(KEY_A) is None
        assert cache.get_stats()["misses"] == 1

    def test_entry_expires(self, cache, clock):
        cache.set(KEY_A, [1.0, 2.0], ttl=10)
        clock.advance(9)
        assert cache.get(KEY_A) is not None
        clock.advance(1)
        assert cache.get(KEY_A) is None

    @pytest.mark.parametrize("key", ["", "abc", "A" * 64, "g" * 64, "a" * 63])
    def test_invalid_key_rejected(self, cache, key):
        with pytest.raises(ValueError):
            cache.get(key)
        with pytest.raises(ValueError):
            cache.set(key, [1.0])

    @pytest.mark.parametrize(
        "vector",
        [[], [1.0] * 16001, [1.0, float("nan")], [float("inf")], ["x", 1.0]],
    )
    def test_invalid_vector_rejected(self, cache, vector):
        assert cache.set(KEY_A, vector) is False
        assert cache.get(KEY_A) is None

    def test_overwrite_replaces_vector(self, cache):
        cache.set(KEY_A, [1.0, 0.0])
        cache.set(KEY_A, [0.0, 1.0])
        assert cache.get(KEY_A) == pytest.approx([0.0, 1.0])

    def test_get_multiple_returns_hits_only(self, cache):
        cache.set(KEY_A, [1.0])
        cache.set(KEY_B, [2.0])
        hits = cache.get_multiple([KEY_A, KEY_B, KEY_C])
        assert set(hits) == {KEY_A, KEY_B}
        assert hits[KEY_B] == pytest.approx([2.0])

    def test_get_multiple_skips_invalid_keys(self, cache):
        cache.set(KEY_A, [1.0])
        hits = cache.get_multiple([KEY_A, "not-a-key", KEY_B])
        assert set(hits) == {KEY_A}

    def test_set_multiple_isolates_bad_entries(self, cache):
        results = cache.set_multiple({KEY_A: [1.0], "bad": [2.0], KEY_B: [float("nan")]})
        assert results == {KEY_A: True, "bad": False, KEY_B: False}
        assert cache.get(KEY_A) == pytest.approx([1.0])

    def test_invalidate(self, cache):
        cache.set(KEY_A, [1.0])
        assert cache.invalidate(KEY_A) is True
        assert cache.invalidate(KEY_A) is False
        assert cache.get(KEY_A) is None

    def test_clear(self, cache):
        cache.set(KEY_A, [1.0])
        cache.set(KEY_B, [2.0])
        assert cache.clear() == 2
        assert cache.get_stats()["total_entries"] == 0

    def test_maintenance_removes_expired_first(self, cache, clock):
        cache.set(KEY_A, [1.0], ttl=5)
        cache.set(KEY_B, [2.0])
        clock.advance(10)

        result = cache.maintenance()

        assert result.expired_removed == 1
        assert result.evicted == 0
        assert cache.get(KEY_B) is not None

    def test_maintenance_evicts_least_recently_used(self, cache, clock):
        cache.set(KEY_A, [1.0])
        clock.advance(1)
        cache.set(KEY_B, [2.0])
        clock.advance(1)
        cache.set(KEY_C, [3.0])
        clock.advance(1)
        cache.get(KEY_A)  # A is now the most recently used

        result = cache.maintenance()

        assert result.evicted == 1
        assert cache.get(KEY_B) is None
        assert cache.get(KEY_A) is not None
        assert cache.get(KEY_C) is not None
        assert cache.get_stats()["total_entries"] == 2

    def test_stats(self, cache):
        cache.set(KEY_A, [1.0])
        cache.get(KEY_A)
        cache.get(KEY_B)
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["max_entries"] == 2


def test_probabilistic_maintenance_runs_on_write(clock):
    cache = MemoryEmbeddingCache(ttl=5, max_entries=10, cleanup_probability=1.0, clock=clock, rng=random.Random(1))
    cache.set(KEY_A, [1.0])
    clock.advance(10)
    cache.set(KEY_B, [2.0])
    assert cache.get_stats()["total_entries"] == 1


class TestDatabaseEmbeddingCache:
    """Storage details of the SQL backend."""

    def test_vector_encoding(self):
        vector = [0.25, -1.5, 3.0]
        assert encode_vector(vector, compress=True)[:1] == b"z"
        assert encode_vector(vector, compress=False)[:1] == b"r"
        assert decode_vector(encode_vector(vector, compress=True)) == vector

    def test_unknown_marker(self):
        with pytest.raises(ValueError):
            decode_vector(b"x1234")

    def test_rows_record_dimensions_and_hits(self, sqlite_engine, clock):
        cache = DatabaseEmbeddingCache(sqlite_engine, table_name="cache_rows", cleanup_probability=0.0, clock=clock)
        cache.set(KEY_A, [1.0, 2.0, 3.0])
        cache.set(KEY_A, [1.0, 2.0, 3.0])
        cache.get(KEY_A)

        with sqlite_engine.connect() as conn:
            row = conn.execute(select(cache.table)).one()
        assert row.dimensions == 3
        assert row.hit_count == 2
        assert row.expires > row.created

    @pytest.mark.parametrize("payload", [b"x1234", b"z" + b"not zlib data", b"r123"])
    def test_undecodable_row_is_dropped_as_a_miss(self, sqlite_engine, clock, payload):
        cache = DatabaseEmbeddingCache(sqlite_engine, table_name="corrupt", cleanup_probability=0.0, clock=clock)
        cache.set(KEY_A, [1.0, 2.0])
        cache.set(KEY_B, [3.0, 4.0])
        with sqlite_engine.begin() as conn:
            conn.execute(update(cache.table).where(cache.table.c.text_hash == KEY_A).values(embedding_data=payload))

        hits = cache.get_multiple([KEY_A, KEY_B])

        assert set(hits) == {KEY_B}
        assert cache.get(KEY_A) is None
        assert cache.get_stats()["total_entries"] == 1

    def test_failed_maintenance_does_not_fail_the_write(self, sqlite_engine, clock, monkeypatch):
        cache = DatabaseEmbeddingCache(sqlite_engine, table_name="cleanup", cleanup_probability=1.0, clock=clock)

        def broken_maintenance():
            raise DegradationEvent.create(DegradationKind.CACHE_DEGRADED, "database embedding cache (maintenance)")

        monkeypatch.setattr(cache, "maintenance", broken_maintenance)

        assert cache.set(KEY_A, [1.0]) is True
        assert cache.get(KEY_A) == pytest.approx([1.0])

    def test_storage_failure_is_cache_degradation(self, sqlite_engine, clock):
        cache = DatabaseEmbeddingCache(sqlite_engine, table_name="dropped", cleanup_probability=0.0, clock=clock)
        with sqlite_engine.begin() as conn:
            conn.execute(text("DROP TABLE dropped"))

        with pytest.raises(DegradationEvent) as exc_info:
            cache.get(KEY_A)
        assert exc_info.value.kind is DegradationKind.CACHE_DEGRADED

    def test_unsupported_dialect(self):
        class FakeEngine:
            class dialect:
                name = "mysql"

        with pytest.raises(ValueError):
            DatabaseEmbeddingCache(FakeEngine(), create_table=False)


class TestEmbeddingCacheManager:
    """Tests for key generation and failure shielding."""

    def test_key_is_deterministic_and_normalised(self):
        key = EmbeddingCacheManager.generate_cache_key("Machine learning is great", {"model": "m"})
        assert len(key) == 64
        assert key == EmbeddingCacheManager.generate_cache_key("  Machine\tlearning   is great\x00", {"model": "m"})

    def test_key_depends_on_case_and_metadata(self):
        base = EmbeddingCacheManager.generate_cache_key("hello", {"model": "a"})
        assert base != EmbeddingCacheManager.generate_cache_key("Hello", {"model": "a"})
        assert base != EmbeddingCacheManager.generate_cache_key("hello", {"model": "b"})
        assert base == EmbeddingCacheManager.generate_cache_key("hello", {"model": "a"})

    def test_metadata_order_does_not_matter(self):
        first = EmbeddingCacheManager.generate_cache_key("hello", {"model": "a", "dimension": 3})
        second = EmbeddingCacheManager.generate_cache_key("hello", {"dimension": 3, "model": "a"})
        assert first == second

    def test_empty_text_has_no_key(self):
        with pytest.raises(ValueError):
            EmbeddingCacheManager.generate_cache_key("   ")

    def test_disabled_manager_never_hits(self, memory_cache):
        manager = EmbeddingCacheManager(memory_cache, enabled=False)
        assert manager.cache_embedding("hello", [1.0]) is False
        assert manager.get_cached_embedding("hello") is None

    def test_batch_round_trip(self, cache_manager):
        assert cache_manager.cache_embeddings_batch(["a", "b"], [[1.0], [2.0]]) is True
        hits = cache_manager.get_cached_embeddings_batch(["b", "x", "a"])
        assert hits == {0: [2.0], 2: [1.0]}

    def test_batch_length_mismatch(self, cache_manager):
        with pytest.raises(ValueError):
            cache_manager.cache_embeddings_batch(["a", "b"], [[1.0]])

    def test_warmup(self, cache_manager):
        cache_manager.cache_embedding("known", [1.0])

        def generator(text):
            if text == "broken":
                raise RuntimeError("model crashed")
            return [float(len(text))]

        counts = cache_manager.warmup(["known", "fresh", "broken"], generator)

        assert counts == {"cached": 1, "failed": 1, "skipped": 1}
        assert cache_manager.get_cached_embedding("fresh") == [5.0]

    def test_statistics_percentages(self, cache_manager):
        cache_manager.cache_embedding("hello", [1.0])
        cache_manager.get_cached_embedding("hello")
        cache_manager.get_cached_embedding("world")
        cache_manager.get_cached_embedding("hello")

        stats = cache_manager.get_statistics()

        assert stats["total_requests"] == 3
        assert stats["hit_percentage"] == 66.67
        assert stats["miss_percentage"] == 33.33
        assert stats["enabled"] is True

    def test_degraded_backend_behaves_like_a_miss(self, sqlite_engine, clock):
        backend = DatabaseEmbeddingCache(sqlite_engine, table_name="gone", cleanup_probability=0.0, clock=clock)
        manager = EmbeddingCacheManager(backend, enabled=True)
        with sqlite_engine.begin() as conn:
            conn.execute(text("DROP TABLE gone"))

        assert manager.get_cached_embedding("hello") is None
        assert manager.cache_embedding("hello", [1.0]) is False
        assert manager.clear() is False
        assert manager.perform_maintenance()["success"] is False


def test_machine_learning_is_great_round_trip(provider, cache_manager):
    """A cached text is served without calling the provider until the cache is cleared."""
    service = EmbeddingService(provider=provider, cache_manager=cache_manager, sleep=lambda s: None)
    text_value = "Machine learning is great"

    first = service.embed(text_value)
    key = EmbeddingCacheManager.generate_cache_key(text_value, service.metadata)
    assert len(provider.calls) == 1

    assert service.embed(text_value) == first
    assert cache_manager.get_cached_embedding(text_value, service.metadata) == first
    assert len(provider.calls) == 1
    assert len(key) == 64

    assert cache_manager.clear() is True
    assert cache_manager.get_cached_embedding(text_value, service.metadata) is None
    service.embed(text_value)
    assert len(provider.calls) == 2
