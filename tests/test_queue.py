"""
Tests for the embedding queue: job stores, manager and worker handlers.
"""

import fakeredis
import pytest

from hybrid_search.circuit_breaker import CircuitBreaker
from hybrid_search.config import QueueSettings
from hybrid_search.degradation import DegradationEvent
from hybrid_search.entities import IndexRow, QueueItem, QueueOperation
from hybrid_search.repositories import MemoryJobStore, RedisJobStore
from hybrid_search.services import EmbeddingQueueManager, EmbeddingService, EmbeddingWorker


def make_config(**overrides) -> QueueSettings:
    values = {
        "enabled": True,
        "default_enabled": True,
        "servers": {},
        "batch_size": 10,
        "max_processing_time": 50,
        "lease_timeout": 300,
        "max_attempts": 3,
        "stall_backoff": 1.0,
        "max_idle_rounds": 3,
        "priority_levels": {"high": 50, "normal": 100, "low": 200},
        "key_prefix": "test_queue",
    }
    values.update(overrides)
    return QueueSettings(**values)


def single(item_id: str, priority: int = 100, index_id: str = "articles") -> QueueItem:
    return QueueItem(
        QueueOperation.GENERATE_SINGLE,
        "main",
        index_id,
        {"item_id": item_id, "text": f"text of {item_id}"},
        priority,
    )


@pytest.fixture(params=["memory", "redis"])
def store(request, clock):
    """Both JobStore implementations on the same clock."""
    if request.param == "memory":
        return MemoryJobStore(clock=clock)
    return RedisJobStore(fakeredis.FakeRedis(decode_responses=True), key_prefix="test_queue", clock=clock)


class Recorder:
    """Handler that records processed items and fails on demand."""

    def __init__(self, fail_ids=(), clock=None, cost=0.0):
        self.seen: list[str] = []
        self.fail_ids = set(fail_ids)
        self.clock = clock
        self.cost = cost

    def __call__(self, item: QueueItem):
        if self.clock is not None:
            self.clock.advance(self.cost)
        item_id = item.data["item_id"]
        if item_id in self.fail_ids:
            raise RuntimeError(f"cannot embed {item_id}")
        self.seen.append(item_id)
        return []


def make_manager(store, clock, handler=None, **config):
    return EmbeddingQueueManager(
        store,
        handlers={QueueOperation.GENERATE_SINGLE: handler or Recorder()},
        config=make_config(**config),
        worker_id="worker-1",
        clock=clock,
        sleep=lambda seconds: None,
    )


class TestJobStore:
    """Contract shared by the memory and Redis job stores."""

    def test_claim_in_priority_then_fifo_order(self, store, clock):
        store.put(single("low", priority=200))
        clock.advance(1)
        store.put(single("first", priority=100))
        clock.advance(1)
        store.put(single("second", priority=100))
        clock.advance(1)
        store.put(single("urgent", priority=50))

        claimed = [store.claim("w", 300).item.data["item_id"] for _ in range(4)]

        assert claimed == ["urgent", "first", "second", "low"]
        assert store.claim("w", 300) is None

    def test_claimed_job_is_exclusive(self, store):
        store.put(single("only"))
        job = store.claim("w1", 300)
        assert job.claimed_by == "w1"
        assert store.claim("w2", 300) is None
        assert store.count() == 0
        assert store.claimed_count() == 1

    def test_payload_survives_storage(self, store):
        store.put(single("node/7", priority=42))
        item = store.claim("w", 300).item
        assert item.operation is QueueOperation.GENERATE_SINGLE
        assert item.server_id == "main"
        assert item.index_id == "articles"
        assert item.priority == 42
        assert item.data == {"item_id": "node/7", "text": "text of node/7"}

    def test_delete(self, store):
        store.put(single("a"))
        job = store.claim("w", 300)
        assert store.delete(job.job_id, "other") is False
        assert store.delete(job.job_id, "w") is True
        assert store.delete(job.job_id, "w") is False
        assert store.claimed_count() == 0

    def test_release_returns_job_to_pending(self, store):
        store.put(single("a"))
        job = store.claim("w", 300)
        assert store.release(job.job_id, "other") is False
        assert store.release(job.job_id, "w") is True
        assert store.release(job.job_id, "w") is False
        assert store.count() == 1
        assert store.claim("w", 300).job_id == job.job_id

    def test_expired_lease_is_reclaimed(self, store, clock):
        store.put(single("a"))
        job = store.claim("w1", 10)
        clock.advance(11)

        again = store.claim("w2", 10)

        assert again is not None
        assert again.job_id == job.job_id
        assert again.claimed_by == "w2"

    def test_stale_worker_cannot_touch_a_reclaimed_job(self, store, clock):
        store.put(single("a"))
        stale = store.claim("w1", 300)
        clock.advance(301)
        current = store.claim("w2", 300)
        assert current.job_id == stale.job_id

        assert store.release(stale.job_id, "w1") is False
        assert store.claim("w3", 300) is None
        assert store.delete(stale.job_id, "w1") is False
        assert store.claimed_count() == 1

        assert store.delete(current.job_id, "w2") is True
        assert store.claimed_count() == 0

    def test_pending_items_and_clear(self, store, clock):
        store.put(single("a", priority=200))
        clock.advance(1)
        store.put(single("b", priority=50))
        assert [i.data["item_id"] for i in store.pending_items()] == ["b", "a"]
        assert store.clear() == 2
        assert store.count() == 0


def test_redis_store_failure_is_queue_degradation(clock):
    server = fakeredis.FakeServer()
    server.connected = False
    store = RedisJobStore(fakeredis.FakeRedis(server=server), key_prefix="down", clock=clock)
    with pytest.raises(DegradationEvent) as exc_info:
        store.put(single("a"))
    assert exc_info.value.kind.value == "queue_degraded"


class TestQueueGating:
    def test_global_flag_wins(self, job_store, clock):
        manager = make_manager(job_store, clock, enabled=False, servers={"main": True})
        assert manager.is_queue_enabled_for_server("main") is False

    def test_override_then_default(self, job_store, clock):
        manager = make_manager(job_store, clock, default_enabled=False, servers={"main": True})
        assert manager.is_queue_enabled_for_server("main") is True
        assert manager.is_queue_enabled_for_server("other") is False

        manager.set_queue_enabled_for_server("main", False)
        assert manager.is_queue_enabled_for_server("main") is False

    def test_enqueue_index_items_refused_when_disabled(self, job_store, clock):
        manager = make_manager(job_store, clock, enabled=False)
        assert manager.enqueue_index_items("main", "articles", {"a": "text"}) is False
        assert job_store.count() == 0


class TestEnqueue:
    def test_resolve_priority(self, job_store, clock):
        manager = make_manager(job_store, clock)
        assert manager.resolve_priority("high") == 50
        assert manager.resolve_priority(None) == 100
        assert manager.resolve_priority(7) == 7
        with pytest.raises(ValueError):
            manager.resolve_priority("urgent")
        with pytest.raises(ValueError):
            manager.resolve_priority(True)

    def test_incomplete_payload_rejected(self, job_store, clock):
        manager = make_manager(job_store, clock)
        with pytest.raises(ValueError):
            manager.enqueue_single("main", "articles", "node/1", "")
        with pytest.raises(ValueError):
            manager.enqueue(QueueItem(QueueOperation.GENERATE_BATCH, "main", "articles", {}))

    def test_batch_is_split_by_batch_size(self, job_store, clock):
        manager = make_manager(job_store, clock, batch_size=10)
        texts = {f"node/{i}": f"text {i}" for i in range(25)}

        assert manager.enqueue_batch("main", "articles", texts) is True

        items = job_store.pending_items()
        assert [len(i.data["items"]) for i in items] == [10, 10, 5]

    def test_index_items_single_mode(self, job_store, clock):
        manager = make_manager(job_store, clock)
        manager.enqueue_index_items("main", "articles", {"a": "x", "b": "y"}, use_batch=False)
        assert job_store.count() == 2

    def test_regeneration_defaults_to_low_priority(self, job_store, clock):
        manager = make_manager(job_store, clock)
        manager.enqueue_index_regeneration("main", "articles")
        item = job_store.pending_items()[0]
        assert item.priority == 200
        assert item.data == {"batch_size": 50, "offset": 0}

    def test_store_failure_returns_false(self, clock):
        server = fakeredis.FakeServer()
        server.connected = False
        store = RedisJobStore(fakeredis.FakeRedis(server=server), key_prefix="down", clock=clock)
        manager = make_manager(store, clock)
        assert manager.enqueue_single("main", "articles", "a", "text") is False


class TestProcessQueue:
    def test_processes_everything_and_reports(self, job_store, clock):
        handler = Recorder()
        manager = make_manager(job_store, clock, handler)
        for i in range(5):
            manager.enqueue_single("main", "articles", f"n{i}", "text")

        result = manager.process_queue(max_items=10)

        assert result["processed"] == 5
        assert result["failed"] == 0
        assert result["remaining_items"] == 0
        assert result["errors"] == []
        assert handler.seen == ["n0", "n1", "n2", "n3", "n4"]

    def test_failing_item_does_not_block_others(self, job_store, clock):
        handler = Recorder(fail_ids={"n1"})
        manager = make_manager(job_store, clock, handler)
        for i in range(4):
            manager.enqueue_single("main", "articles", f"n{i}", "text")

        result = manager.process_queue(max_items=10)

        assert result["processed"] == 3
        assert result["failed"] == 1
        assert result["remaining_items"] == 1
        assert "cannot embed n1" in result["errors"][0]
        assert job_store.claimed_count() == 0

    def test_high_priority_first(self, job_store, clock):
        handler = Recorder()
        manager = make_manager(job_store, clock, handler)
        manager.enqueue_single("main", "articles", "background", "text", priority="low")
        manager.enqueue_single("main", "articles", "editor", "text", priority="high")

        manager.process_queue()

        assert handler.seen == ["editor", "background"]

    def test_max_items(self, job_store, clock):
        manager = make_manager(job_store, clock)
        for i in range(5):
            manager.enqueue_single("main", "articles", f"n{i}", "text")

        result = manager.process_queue(max_items=2)

        assert result["processed"] == 2
        assert result["remaining_items"] == 3

    def test_time_budget_checked_between_items(self, job_store, clock):
        handler = Recorder(clock=clock, cost=30)
        manager = make_manager(job_store, clock, handler)
        for i in range(5):
            manager.enqueue_single("main", "articles", f"n{i}", "text")

        result = manager.process_queue(max_items=10, time_budget=50)

        assert result["processed"] == 2
        assert result["elapsed_time"] == 60
        assert result["remaining_items"] == 3

    def test_follow_ups_are_enqueued(self, job_store, clock):
        def handler(item):
            if item.data["item_id"] == "parent":
                return [single("child")]
            return []

        manager = make_manager(job_store, clock, handler)
        manager.enqueue_single("main", "articles", "parent", "text")

        first = manager.process_queue(max_items=1)
        assert first["remaining_items"] == 1
        second = manager.process_queue()
        assert second["processed"] == 1
        assert second["remaining_items"] == 0

    def test_missing_handler_counts_as_failure(self, job_store, clock):
        manager = make_manager(job_store, clock)
        manager.enqueue_index_regeneration("main", "articles")

        result = manager.process_queue()

        assert result["failed"] == 1
        assert "No handler registered" in result["errors"][0]

    def test_until_empty_gives_up_when_stalled(self, job_store, clock):
        sleeps = []
        manager = EmbeddingQueueManager(
            job_store,
            handlers={QueueOperation.GENERATE_SINGLE: Recorder(fail_ids={"stuck"})},
            config=make_config(max_idle_rounds=3, stall_backoff=2.0),
            clock=clock,
            sleep=sleeps.append,
        )
        manager.enqueue_single("main", "articles", "ok", "text")
        manager.enqueue_single("main", "articles", "stuck", "text")

        totals = manager.process_until_empty()

        assert totals["processed"] == 1
        assert totals["failed"] == 4
        assert totals["rounds"] == 4
        assert totals["remaining_items"] == 1
        assert sleeps == [2.0, 2.0]

    def test_store_outage_reported(self, clock):
        server = fakeredis.FakeServer()
        store = RedisJobStore(fakeredis.FakeRedis(server=server), key_prefix="flaky", clock=clock)
        manager = make_manager(store, clock)
        manager.enqueue_single("main", "articles", "a", "text")
        server.connected = False

        result = manager.process_queue()

        assert result["processed"] == 0
        assert result["remaining_items"] == -1
        assert result["errors"]

    def test_stats(self, job_store, clock):
        manager = make_manager(job_store, clock)
        manager.enqueue_single("main", "articles", "a", "text", priority="high")
        manager.enqueue_single("main", "articles", "b", "text")
        manager.enqueue_index_regeneration("main", "articles")

        stats = manager.get_queue_stats()

        assert stats["total_items"] == 3
        assert stats["by_priority"] == {"high": 1, "normal": 1, "low": 1}
        assert stats["by_operation"]["generate_single"] == 2
        assert stats["by_operation"]["regenerate_index_range"] == 1
        assert stats["claimed_items"] == 0

    def test_clear_queue(self, job_store, clock):
        manager = make_manager(job_store, clock)
        manager.enqueue_single("main", "articles", "a", "text")
        assert manager.clear_queue() == 1
        assert manager.get_queue_stats()["total_items"] == 0


@pytest.fixture
def worker_service(provider, cache_manager):
    """No retries and a breaker that never opens, so failures stay per item."""
    return EmbeddingService(
        provider=provider,
        cache_manager=cache_manager,
        circuit_breaker=CircuitBreaker("fake", failure_threshold=100),
        max_retries=0,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def indexed_store(search_store):
    search_store.ensure_index("articles", 16)
    search_store.replace_rows(
        "articles",
        [IndexRow(f"node/{i}", "default", "en", {}, f"article number {i}") for i in range(5)],
    )
    return search_store


class TestEmbeddingWorker:
    def test_generate_single(self, worker_service, indexed_store, provider):
        worker = EmbeddingWorker(worker_service, indexed_store)
        item = QueueItem(QueueOperation.GENERATE_SINGLE, "main", "articles", {"item_id": "node/1", "text": "hello"})

        assert worker.generate_single(item) == []
        assert indexed_store.get_row("articles", "node/1").embedding == provider.vector_for("hello")

    def test_generate_batch_partial_failure_requeues_failed_subset(self, worker_service, indexed_store, provider):
        provider.fail_on = {"bad text": RuntimeError("model crashed")}
        worker = EmbeddingWorker(worker_service, indexed_store, max_attempts=3)
        item = QueueItem(
            QueueOperation.GENERATE_BATCH,
            "main",
            "articles",
            {"items": {"node/1": "good text", "node/2": "bad text"}},
        )

        follow_ups = worker.generate_batch(item)

        assert indexed_store.get_row("articles", "node/1").embedding is not None
        assert indexed_store.get_row("articles", "node/2").embedding is None
        assert len(follow_ups) == 1
        assert follow_ups[0].attempt == 1
        assert follow_ups[0].data["items"] == {"node/2": "bad text"}

    def test_generate_batch_gives_up_after_max_attempts(self, worker_service, indexed_store, provider):
        provider.fail_on = {"bad text": RuntimeError("model crashed")}
        worker = EmbeddingWorker(worker_service, indexed_store, max_attempts=3)
        item = QueueItem(
            QueueOperation.GENERATE_BATCH,
            "main",
            "articles",
            {"items": {"node/1": "good text", "node/2": "bad text"}},
            attempt=2,
        )
        assert worker.generate_batch(item) == []

    def test_generate_batch_all_failed_raises(self, worker_service, indexed_store, provider):
        provider.fail_all = RuntimeError("provider down")
        worker = EmbeddingWorker(worker_service, indexed_store)
        item = QueueItem(QueueOperation.GENERATE_BATCH, "main", "articles", {"items": {"node/1": "a", "node/2": "b"}})

        with pytest.raises(DegradationEvent):
            worker.generate_batch(item)

    def test_generate_batch_rejects_bad_payload(self, worker_service, indexed_store):
        worker = EmbeddingWorker(worker_service, indexed_store)
        item = QueueItem(QueueOperation.GENERATE_BATCH, "main", "articles", {"items": ["node/1"]})
        with pytest.raises(ValueError):
            worker.generate_batch(item)

    def test_regenerate_index_range_pages_through_index(self, worker_service, indexed_store):
        worker = EmbeddingWorker(worker_service, indexed_store)
        item = QueueItem(
            QueueOperation.REGENERATE_INDEX_RANGE, "main", "articles", {"batch_size": 3, "offset": 0}, 200
        )

        follow_ups = worker.regenerate_index_range(item)

        assert [indexed_store.get_row("articles", f"node/{i}").embedding is not None for i in range(5)] == [
            True,
            True,
            True,
            False,
            False,
        ]
        assert follow_ups[0].data == {"batch_size": 3, "offset": 3}
        assert follow_ups[0].priority == 200

        last = worker.regenerate_index_range(follow_ups[0])
        assert worker.regenerate_index_range(last[0]) == []
        assert all(indexed_store.get_row("articles", f"node/{i}").embedding for i in range(5))

    def test_worker_drains_queue_end_to_end(self, worker_service, indexed_store, job_store, clock):
        worker = EmbeddingWorker(worker_service, indexed_store)
        manager = EmbeddingQueueManager(
            job_store,
            handlers=worker.handlers(),
            config=make_config(),
            clock=clock,
            sleep=lambda seconds: None,
        )
        manager.enqueue_index_regeneration("main", "articles", batch_size=2)

        totals = manager.process_until_empty()

        assert totals["failed"] == 0
        assert totals["processed"] == 4  # three pages plus the empty one
        assert all(indexed_store.get_row("articles", f"node/{i}").embedding for i in range(5))

    def test_batch_enqueue_then_process_with_failing_chunk(
        self, worker_service, indexed_store, job_store, clock, provider
    ):
        manager = EmbeddingQueueManager(
            job_store,
            handlers=EmbeddingWorker(worker_service, indexed_store).handlers(),
            config=make_config(batch_size=2),
            worker_id="worker-1",
            clock=clock,
            sleep=lambda seconds: None,
        )
        texts = {f"node/{i}": f"text {i}" for i in range(5)}
        provider.fail_on = {"text 2": RuntimeError("model crashed"), "text 3": RuntimeError("model crashed")}

        assert manager.enqueue_batch("main", "articles", texts) is True
        assert job_store.count() == 3

        result = manager.process_queue(max_items=3)

        assert result["processed"] == 2
        assert result["failed"] == 1
        assert result["processed"] + result["failed"] == 3
        assert result["remaining_items"] == 1
        assert len(result["errors"]) == 1
        assert job_store.claimed_count() == 0
        embedded = [indexed_store.get_row("articles", f"node/{i}").embedding is not None for i in range(5)]
        assert embedded == [True, True, False, False, True]

        provider.fail_on = {}
        retry = manager.process_queue(max_items=3)

        assert retry["processed"] == 1
        assert retry["remaining_items"] == 0
        assert all(indexed_store.get_row("articles", f"node/{i}").embedding for i in range(5))
