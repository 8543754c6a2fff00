"""Embedding queue manager.

Defers embedding generation to background workers:

- enqueue_* methods turn indexing work into prioritised QueueItems
- process_queue() claims items one at a time under a lease, dispatches them
  to the handler registered for their operation and deletes them on success
- a failed item is released back to the queue at the end of the round, so
  one bad item never blocks or starves the others

Priorities are numbers (lower = more urgent) with named tiers high, normal
and low.
"""

import logging
import os
import socket
import time
from collections.abc import Callable, Mapping
from typing import Any

from hybrid_search.config import QueueSettings, settings
from hybrid_search.degradation import DegradationEvent, log_degradation
from hybrid_search.entities import QueueItem, QueueOperation
from hybrid_search.protocols import JobStore

logger = logging.getLogger(__name__)

# A handler processes one item and may return follow-up items to enqueue
QueueHandler = Callable[[QueueItem], list[QueueItem] | None]

MAX_REPORTED_ERRORS = 10


class EmbeddingQueueManager:
    """Priority queue of embedding jobs on top of a JobStore.

    Example:
        ```python
        manager = EmbeddingQueueManager(
            store=RedisJobStore.create(),
            handlers=EmbeddingWorker(service, search_store).handlers(),
        )
        manager.enqueue_single("main", "articles", "node/1", "Machine learning is great")
        result = manager.process_queue(max_items=10, time_budget=50)
        print(result["processed"], result["remaining_items"])
        ```
    """

    def __init__(
        self,
        store: JobStore,
        handlers: Mapping[QueueOperation, QueueHandler] | None = None,
        config: QueueSettings | None = None,
        worker_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the queue manager.

        Args:
            store: Job storage (Redis or in-process).
            handlers: Handler per operation.
            config: Queue settings. Defaults to settings.queue.
            worker_id: Lease owner name. Defaults to host:pid.
            clock: Monotonic clock for time budgets.
            sleep: Called between rounds that made no progress.
        """
        self._store = store
        self._handlers: dict[QueueOperation, QueueHandler] = dict(handlers or {})
        self._config = config or settings.queue
        self._enabled = self._config.enabled
        self._server_overrides = dict(self._config.servers)
        self._worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"
        self._clock = clock
        self._sleep = sleep

    @property
    def config(self) -> QueueSettings:
        return self._config

    # Gating

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def is_queue_enabled_for_server(self, server_id: str) -> bool:
        """The global flag wins; then the per-server override; then the default."""
        if not self._enabled:
            return False
        return self._server_overrides.get(server_id, self._config.default_enabled)

    def set_queue_enabled_for_server(self, server_id: str, enabled: bool) -> None:
        self._server_overrides[server_id] = enabled
        logger.info("Embedding queue %s for server %s", "enabled" if enabled else "disabled", server_id)

    # Priorities

    def resolve_priority(self, priority: str | int | None, default: str = "normal") -> int:
        """Map a tier name or number to a numeric priority.

        Raises:
            ValueError: For an unknown tier name
        """
        if priority is None:
            priority = default
        if isinstance(priority, bool):
            raise ValueError(f"Invalid priority: {priority!r}")
        if isinstance(priority, int):
            return priority
        levels = self._config.priority_levels
        if priority not in levels:
            raise ValueError(f"Unknown priority {priority!r}; expected one of {sorted(levels)}")
        return levels[priority]

    def band_for(self, priority: int) -> str:
        levels = self._config.priority_levels
        if priority <= levels["high"]:
            return "high"
        if priority <= levels["normal"]:
            return "normal"
        return "low"

    # Enqueueing

    def enqueue(self, item: QueueItem) -> bool:
        """Validate and store one item.

        Returns:
            False (and logs a queue degradation) if the store failed

        Raises:
            ValueError: If the item payload is incomplete
        """
        item.validate()
        try:
            self._store.put(item)
        except DegradationEvent as e:
            log_degradation(logger, e)
            return False
        return True

    def enqueue_single(
        self,
        server_id: str,
        index_id: str,
        item_id: str,
        text: str,
        priority: str | int = "normal",
    ) -> bool:
        item = QueueItem(
            QueueOperation.GENERATE_SINGLE,
            server_id,
            index_id,
            {"item_id": item_id, "text": text},
            self.resolve_priority(priority),
        )
        return self.enqueue(item)

    def enqueue_batch(
        self,
        server_id: str,
        index_id: str,
        items: Mapping[str, str],
        priority: str | int = "normal",
    ) -> bool:
        """Enqueue many texts, split into sub-batches of ``batch_size``.

        Returns:
            True only if every sub-batch was stored
        """
        if not items:
            return True
        numeric = self.resolve_priority(priority)
        entries = list(items.items())
        size = self._config.batch_size
        ok = True
        for start in range(0, len(entries), size):
            chunk = dict(entries[start : start + size])
            item = QueueItem(QueueOperation.GENERATE_BATCH, server_id, index_id, {"items": chunk}, numeric)
            ok = self.enqueue(item) and ok
        return ok

    def enqueue_index_regeneration(
        self,
        server_id: str,
        index_id: str,
        batch_size: int = 50,
        offset: int = 0,
        priority: str | int = "low",
    ) -> bool:
        """Enqueue a resumable regeneration of every embedding in an index."""
        if batch_size < 1 or offset < 0:
            raise ValueError("batch_size must be positive and offset non-negative")
        item = QueueItem(
            QueueOperation.REGENERATE_INDEX_RANGE,
            server_id,
            index_id,
            {"batch_size": batch_size, "offset": offset},
            self.resolve_priority(priority),
        )
        return self.enqueue(item)

    def enqueue_index_items(
        self,
        server_id: str,
        index_id: str,
        texts: Mapping[str, str],
        use_batch: bool = True,
        priority: str | int = "normal",
    ) -> bool:
        """Queue embeddings for freshly indexed items.

        Returns:
            False when the queue is disabled for the server or a store write
            failed; the caller should then generate synchronously
        """
        if not self.is_queue_enabled_for_server(server_id):
            return False
        if use_batch and len(texts) > 1:
            return self.enqueue_batch(server_id, index_id, texts, priority)
        ok = True
        for item_id, text in texts.items():
            ok = self.enqueue_single(server_id, index_id, item_id, text, priority) and ok
        return ok

    # Processing

    def process_queue(self, max_items: int | None = None, time_budget: float | None = None) -> dict[str, Any]:
        """Run one processing round.

        Stops when ``max_items`` items were handled (successes and failures
        both count), the time budget is spent, or the queue is empty. The
        budget is checked between items.

        Args:
            max_items: Defaults to settings batch_size.
            time_budget: Seconds. Defaults to settings max_processing_time.

        Returns:
            processed, failed, elapsed_time, remaining_items and the first
            ten errors
        """
        max_items = self._config.batch_size if max_items is None else max_items
        budget = self._config.max_processing_time if time_budget is None else time_budget
        start = self._clock()
        processed = failed = 0
        errors: list[str] = []
        held: list[str] = []

        try:
            while processed + failed < max_items and self._clock() - start < budget:
                job = self._store.claim(self._worker_id, self._config.lease_timeout)
                if job is None:
                    break
                operation = job.item.operation
                try:
                    handler = self._handlers.get(operation)
                    if handler is None:
                        raise ValueError(f"No handler registered for {operation.value}")
                    follow_ups = handler(job.item) or []
                except Exception as e:
                    failed += 1
                    held.append(job.job_id)
                    errors.append(f"{operation.value} ({job.item.index_id}): {e}")
                    logger.warning("Queue item %s failed: %s", job.job_id, e)
                    continue

                for follow_up in follow_ups:
                    self.enqueue(follow_up)
                self._store.delete(job.job_id, self._worker_id)
                processed += 1
        except DegradationEvent as e:
            log_degradation(logger, e)
            errors.append(e.technical_message)
        finally:
            # Released only now so a failing item is not claimed again this round
            for job_id in held:
                try:
                    self._store.release(job_id, self._worker_id)
                except DegradationEvent as e:
                    log_degradation(logger, e)

        elapsed = self._clock() - start
        remaining = self._safe_count()
        if processed or failed:
            logger.info(
                "Queue round: %d processed, %d failed, %d remaining in %.2fs",
                processed,
                failed,
                remaining,
                elapsed,
            )
        return {
            "processed": processed,
            "failed": failed,
            "elapsed_time": elapsed,
            "remaining_items": remaining,
            "errors": errors[:MAX_REPORTED_ERRORS],
        }

    def process_until_empty(
        self,
        max_items_per_round: int | None = None,
        time_budget: float | None = None,
    ) -> dict[str, Any]:
        """Repeat rounds until the queue drains or stops making progress.

        After a round that processed nothing, waits ``stall_backoff``
        seconds; gives up after ``max_idle_rounds`` such rounds in a row.
        """
        totals: dict[str, Any] = {"processed": 0, "failed": 0, "rounds": 0, "errors": []}
        idle = 0
        while True:
            result = self.process_queue(max_items_per_round, time_budget)
            totals["rounds"] += 1
            totals["processed"] += result["processed"]
            totals["failed"] += result["failed"]
            totals["errors"].extend(result["errors"])
            totals["remaining_items"] = result["remaining_items"]

            if result["remaining_items"] <= 0 and result["failed"] == 0:
                break
            if result["processed"] == 0:
                idle += 1
                if idle >= self._config.max_idle_rounds:
                    logger.warning(
                        "Queue stalled after %d idle rounds, %d items remaining",
                        idle,
                        result["remaining_items"],
                    )
                    break
                self._sleep(self._config.stall_backoff)
            else:
                idle = 0

        totals["errors"] = totals["errors"][:MAX_REPORTED_ERRORS]
        return totals

    # Maintenance

    def clear_queue(self) -> int:
        try:
            removed = self._store.clear()
        except DegradationEvent as e:
            log_degradation(logger, e)
            return 0
        logger.info("Cleared %d embedding queue items", removed)
        return removed

    def get_queue_stats(self) -> dict[str, Any]:
        try:
            pending = self._store.pending_items()
            claimed = self._store.claimed_count()
        except DegradationEvent as e:
            log_degradation(logger, e)
            return {"enabled": self._enabled, "error": e.user_message}

        by_priority = {"high": 0, "normal": 0, "low": 0}
        by_operation = {op.value: 0 for op in QueueOperation}
        for item in pending:
            by_priority[self.band_for(item.priority)] += 1
            by_operation[item.operation.value] += 1
        return {
            "enabled": self._enabled,
            "total_items": len(pending),
            "claimed_items": claimed,
            "by_priority": by_priority,
            "by_operation": by_operation,
            "batch_size": self._config.batch_size,
            "max_processing_time": self._config.max_processing_time,
        }

    def _safe_count(self) -> int:
        try:
            return self._store.count()
        except DegradationEvent as e:
            log_degradation(logger, e)
            return -1
