"""Hybrid Search - Full-text search fused with vector similarity.

This package provides a layered architecture for embedding-augmented search:

Layers:
    - protocols: Interface contracts (EmbeddingCache, EmbeddingProvider, JobStore, SearchStore)
    - repositories: Data access implementations
    - services: Business logic (embeddings, queue, query planning, indexing, search)
    - handlers: HTTP endpoint handlers
    - dto: Data transfer objects (API contracts)
    - entities: Domain models (internal)

Usage:
    ```python
    from hybrid_search.repositories import MemoryEmbeddingCache, OpenAIEmbeddingProvider
    from hybrid_search.services import EmbeddingCacheManager, EmbeddingService

    embeddings = EmbeddingService.create(
        provider=OpenAIEmbeddingProvider.create(),
        cache_manager=EmbeddingCacheManager(MemoryEmbeddingCache()),
    )
    ```

For HTTP API:
    ```python
    from hybrid_search.api.app import app
    ```
"""

from hybrid_search.config import get_engine, get_redis_client, settings
from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.entities import HybridSearchRequest, IndexField, IndexItem, SearchMode, SearchResult
from hybrid_search.handlers import SearchHandler
from hybrid_search.protocols import EmbeddingCache, EmbeddingProvider, JobStore, SearchStore
from hybrid_search.repositories import (
    DatabaseEmbeddingCache,
    MemoryEmbeddingCache,
    PostgresSearchStore,
    RedisJobStore,
)
from hybrid_search.services import (
    EmbeddingCacheManager,
    EmbeddingQueueManager,
    EmbeddingService,
    HybridQueryBuilder,
    HybridSearchService,
    IndexWriter,
)

__all__ = [
    # Configuration
    "settings",
    "get_engine",
    "get_redis_client",
    # Errors
    "DegradationEvent",
    "DegradationKind",
    # Protocols (interfaces)
    "EmbeddingCache",
    "EmbeddingProvider",
    "JobStore",
    "SearchStore",
    # Services (business logic)
    "EmbeddingCacheManager",
    "EmbeddingQueueManager",
    "EmbeddingService",
    "HybridQueryBuilder",
    "HybridSearchService",
    "IndexWriter",
    # Handlers (HTTP)
    "SearchHandler",
    # Repositories (data access)
    "DatabaseEmbeddingCache",
    "MemoryEmbeddingCache",
    "PostgresSearchStore",
    "RedisJobStore",
    # Entities (domain models)
    "HybridSearchRequest",
    "IndexField",
    "IndexItem",
    "SearchMode",
    "SearchResult",
]
