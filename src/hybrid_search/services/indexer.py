"""Indexing (write) path.

For each item:
1. Concatenate searchable fields into one text blob (the full-text vector
   is derived from it by the store)
2. Take the precomputed embedding, else a cached one
3. On a cache miss, queue generation when the queue is enabled for the
   server, otherwise generate synchronously
4. Delete-then-insert one row per item

Embedding failures never fail indexing: the row is stored without an
embedding and stays reachable through full-text search.
"""

import logging

from hybrid_search.degradation import DegradationEvent, log_degradation
from hybrid_search.entities import IndexingReport, IndexItem, IndexRow
from hybrid_search.protocols import SearchStore
from hybrid_search.services.embedding_service import EmbeddingService
from hybrid_search.services.queue_manager import EmbeddingQueueManager
from hybrid_search.utils import vector_problem

logger = logging.getLogger(__name__)


class IndexWriter:
    """Writes items into a search index with their embeddings.

    Example:
        ```python
        writer = IndexWriter(search_store, embedding_service, queue_manager, server_id="main")
        report = writer.index_items("articles", [IndexItem("node/1", fields=(IndexField("title", "ML"),))])
        print(report.embedded, report.queued)
        ```
    """

    def __init__(
        self,
        search_store: SearchStore,
        embedding_service: EmbeddingService | None,
        queue_manager: EmbeddingQueueManager | None = None,
        server_id: str = "default",
    ) -> None:
        """Initialize the index writer.

        Args:
            search_store: Destination of the rows.
            embedding_service: Generates embeddings. None indexes text only.
            queue_manager: Defers generation when enabled for ``server_id``.
            server_id: Search server this writer belongs to.
        """
        self._store = search_store
        self._embeddings = embedding_service
        self._queue = queue_manager
        self._server_id = server_id

    @property
    def server_id(self) -> str:
        return self._server_id

    def ensure_index(self, index_id: str) -> None:
        dimension = self._embeddings.dimension if self._embeddings is not None else 1
        self._store.ensure_index(index_id, dimension)

    def index_items(self, index_id: str, items: list[IndexItem]) -> IndexingReport:
        """Index a batch of items.

        Raises:
            DegradationEvent: If the store cannot write the rows
        """
        report = IndexingReport()
        if not items:
            return report

        texts = {item.item_id: item.search_text() for item in items}
        vectors: dict[str, list[float]] = {}
        misses: dict[str, str] = {}

        for item in items:
            text = texts[item.item_id]
            if item.embedding is not None:
                problem = vector_problem(item.embedding)
                if problem is None:
                    vectors[item.item_id] = list(item.embedding)
                    continue
                logger.warning("Ignoring precomputed embedding for %s: %s", item.item_id, problem)
            if not text or self._embeddings is None:
                continue
            cached = self._embeddings.get_cached(text)
            if cached is not None:
                vectors[item.item_id] = cached
            else:
                misses[item.item_id] = text

        use_queue = self._queue is not None and self._queue.is_queue_enabled_for_server(self._server_id)
        if misses and not use_queue:
            vectors.update(self._generate(misses, report))

        rows = [
            IndexRow(
                item_id=item.item_id,
                datasource=item.datasource,
                language=item.language,
                fields=item.field_values(),
                search_text=texts[item.item_id],
                embedding=vectors.get(item.item_id),
            )
            for item in items
        ]
        self._store.replace_rows(index_id, rows)
        report.indexed.extend(item.item_id for item in items)
        report.embedded.extend(item_id for item_id in texts if item_id in vectors)

        if misses and use_queue:
            if self._queue.enqueue_index_items(self._server_id, index_id, misses):
                report.queued.extend(misses)
            else:
                # Queue degraded: fall back to synchronous processing
                generated = self._generate(misses, report)
                for item_id, vector in generated.items():
                    self._store.update_embedding(index_id, item_id, vector)
                report.embedded.extend(generated)

        report.without_embedding.extend(
            item_id
            for item_id in texts
            if item_id not in report.embedded and item_id not in report.queued
        )
        logger.info(
            "Indexed %d items into %s (%d embedded, %d queued, %d without embedding)",
            len(report.indexed),
            index_id,
            len(report.embedded),
            len(report.queued),
            len(report.without_embedding),
        )
        return report

    def delete_items(self, index_id: str, item_ids: list[str]) -> int:
        return self._store.delete_rows(index_id, item_ids)

    def regenerate_embeddings(self, index_id: str, batch_size: int = 50) -> bool:
        """Schedule regeneration of every embedding in the index.

        Returns:
            False when the queue is unavailable for this server
        """
        if self._queue is None or not self._queue.is_queue_enabled_for_server(self._server_id):
            return False
        return self._queue.enqueue_index_regeneration(self._server_id, index_id, batch_size=batch_size)

    def _generate(self, texts: dict[str, str], report: IndexingReport) -> dict[str, list[float]]:
        ids = list(texts)
        vectors, failures = self._embeddings.embed_batch([texts[i] for i in ids])
        for error in failures.values():
            if isinstance(error, DegradationEvent):
                log_degradation(logger, error)
                report.add_message(error.user_message)
        return {ids[position]: vector for position, vector in vectors.items()}
