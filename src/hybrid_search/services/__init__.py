"""Service layer for business logic.

This layer contains the core business logic and orchestration.
Services depend on protocols (interfaces), not concrete implementations,
making them testable and flexible.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)

Usage:
    ```python
    from hybrid_search.services import EmbeddingService, HybridQueryBuilder, HybridSearchService

    embeddings = EmbeddingService.create(provider, cache_manager)
    builder = HybridQueryBuilder.create(embeddings)
    search = HybridSearchService(builder, search_store)
    ```
"""

from .cache_manager import EmbeddingCacheManager
from .embedding_service import EmbeddingService
from .indexer import IndexWriter
from .query_builder import HybridQueryBuilder
from .queue_manager import EmbeddingQueueManager
from .queue_worker import EmbeddingWorker
from .search_service import HybridSearchService

__all__ = [
    "EmbeddingCacheManager",
    "EmbeddingService",
    "EmbeddingQueueManager",
    "EmbeddingWorker",
    "HybridQueryBuilder",
    "HybridSearchService",
    "IndexWriter",
]
