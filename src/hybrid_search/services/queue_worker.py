"""Queue handlers that generate embeddings and write them to index rows."""

import logging

from hybrid_search.config import settings
from hybrid_search.degradation import DegradationEvent, log_degradation, partial_batch_failure
from hybrid_search.entities import QueueItem, QueueOperation
from hybrid_search.protocols import SearchStore
from hybrid_search.services.embedding_service import EmbeddingService
from hybrid_search.services.queue_manager import QueueHandler

logger = logging.getLogger(__name__)


class EmbeddingWorker:
    """Handlers for each queue operation.

    Handlers raise to mark the item failed (it is released back to the
    queue) and return follow-up items for work that continues elsewhere.

    Example:
        ```python
        worker = EmbeddingWorker(embedding_service, search_store)
        manager = EmbeddingQueueManager(store, handlers=worker.handlers())
        ```
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        search_store: SearchStore,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            embedding_service: Generates embeddings.
            search_store: Receives the vectors.
            max_attempts: How often the failed part of a batch is retried
                before it is dropped. Defaults to settings.
        """
        self._embeddings = embedding_service
        self._store = search_store
        self._max_attempts = settings.queue.max_attempts if max_attempts is None else max_attempts

    def handlers(self) -> dict[QueueOperation, QueueHandler]:
        return {
            QueueOperation.GENERATE_SINGLE: self.generate_single,
            QueueOperation.GENERATE_BATCH: self.generate_batch,
            QueueOperation.REGENERATE_INDEX_RANGE: self.regenerate_index_range,
        }

    def generate_single(self, item: QueueItem) -> list[QueueItem]:
        item.validate()
        item_id = str(item.data["item_id"])
        vector = self._embeddings.embed(item.data["text"])
        if not self._store.update_embedding(item.index_id, item_id, vector):
            logger.debug("Row %s/%s vanished before its embedding arrived", item.index_id, item_id)
        return []

    def generate_batch(self, item: QueueItem) -> list[QueueItem]:
        """Embed a map of item id -> text.

        Successes are written immediately. The failed subset comes back as
        a follow-up item until ``max_attempts`` is reached.

        Raises:
            ValueError: If the payload is malformed
            DegradationEvent: If every item in the batch failed
        """
        item.validate()
        texts = item.data["items"]
        if not isinstance(texts, dict) or not texts:
            raise ValueError("generate_batch payload 'items' must be a non-empty mapping")

        failed = self._embed_and_write(item.index_id, list(texts.items()), "embedding batch")
        if not failed:
            return []
        if item.attempt + 1 >= self._max_attempts:
            logger.warning(
                "Dropping %d embeddings for index %s after %d attempts",
                len(failed),
                item.index_id,
                item.attempt + 1,
            )
            return []
        return [item.next_attempt(items={item_id: texts[item_id] for item_id in failed})]

    def regenerate_index_range(self, item: QueueItem) -> list[QueueItem]:
        """Regenerate one page of an index and schedule the next page.

        Raises:
            ValueError: If the payload is malformed
            DegradationEvent: If every row of the page failed
        """
        item.validate()
        batch_size = int(item.data["batch_size"])
        offset = int(item.data["offset"])
        if batch_size < 1 or offset < 0:
            raise ValueError("regenerate_index_range needs batch_size >= 1 and offset >= 0")

        rows = self._store.fetch_texts(item.index_id, batch_size, offset)
        if not rows:
            logger.info("Embedding regeneration of index %s complete", item.index_id)
            return []

        rows = [(item_id, text) for item_id, text in rows if text.strip()]
        if rows:
            self._embed_and_write(item.index_id, rows, "index regeneration")
        return [
            QueueItem(
                QueueOperation.REGENERATE_INDEX_RANGE,
                item.server_id,
                item.index_id,
                {"batch_size": batch_size, "offset": offset + batch_size},
                item.priority,
            )
        ]

    def _embed_and_write(self, index_id: str, rows: list[tuple[str, str]], operation: str) -> list[str]:
        """Embed and store rows. Returns the ids that failed."""
        vectors, failures = self._embeddings.embed_batch([text for _, text in rows])
        succeeded: list[str] = []
        for position, vector in vectors.items():
            item_id = str(rows[position][0])
            self._store.update_embedding(index_id, item_id, vector)
            succeeded.append(item_id)

        failed = [str(rows[position][0]) for position in sorted(failures)]
        if failed and not succeeded:
            first = failures[min(failures)]
            if isinstance(first, DegradationEvent):
                raise first
            raise partial_batch_failure([], failed, operation) from first
        if failed:
            log_degradation(logger, partial_batch_failure(succeeded, failed, operation))
        return failed
