"""Dependency injection configuration for FastAPI app.

Uses FastAPI's app.state pattern for storing service instances.

Pattern:
    - Services stored in app.state during lifespan
    - Dependency functions retrieve from request.app.state
    - Clean separation, no global mutable state
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request

from hybrid_search.config import configure_logging, settings
from hybrid_search.handlers import SearchHandler
from hybrid_search.protocols import EmbeddingCache, EmbeddingProvider, JobStore, SearchStore
from hybrid_search.repositories import (
    DatabaseEmbeddingCache,
    MemoryEmbeddingCache,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    PostgresSearchStore,
    RedisJobStore,
)
from hybrid_search.services import (
    EmbeddingCacheManager,
    EmbeddingQueueManager,
    EmbeddingService,
    EmbeddingWorker,
    HybridQueryBuilder,
    HybridSearchService,
    IndexWriter,
)

logger = logging.getLogger(__name__)

_STATE_KEYS = (
    "search_handler",
    "search_service",
    "index_writer",
    "queue_manager",
    "embedding_service",
    "cache_manager",
    "embedding_provider",
    "search_store",
)


def get_handler(request: Request) -> SearchHandler:
    """Dependency injection for SearchHandler from app.state.

    Args:
        request: FastAPI Request object

    Returns:
        The SearchHandler instance from app.state

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "search_handler", None)
    if handler is None:
        raise RuntimeError("SearchHandler not initialized. Check lifespan setup.")
    return handler


def build_provider() -> EmbeddingProvider:
    """Create the embedding provider selected by EMBEDDING_PROVIDER.

    When switching providers or dimensions, clear the embedding cache and
    regenerate the index embeddings.
    """
    if settings.embedding.provider == "ollama":
        return OllamaEmbeddingProvider.create()
    if settings.embedding.provider == "local":
        # Imported lazily: loading sentence-transformers is slow
        from hybrid_search.repositories.local_embedding_provider import LocalEmbeddingProvider

        return LocalEmbeddingProvider.create()
    return OpenAIEmbeddingProvider.create()


def build_cache() -> EmbeddingCache:
    if settings.cache.backend == "memory":
        return MemoryEmbeddingCache(ttl=settings.cache.ttl, max_entries=settings.cache.max_entries)
    return DatabaseEmbeddingCache.create()


def wire_services(
    app: FastAPI,
    *,
    provider: EmbeddingProvider,
    cache: EmbeddingCache,
    job_store: JobStore,
    search_store: SearchStore | None = None,
    server_id: str | None = None,
) -> SearchHandler:
    """Build every layer on top of the given backends and store them in app.state.

    Args:
        app: The FastAPI application instance
        provider: Embedding provider
        cache: Embedding cache backend
        job_store: Queue storage
        search_store: Index storage. If None, a PostgresSearchStore is created.
        server_id: Search server for queue gating. If None, uses settings.

    Returns:
        The wired SearchHandler
    """
    cache_manager = EmbeddingCacheManager(cache)
    embedding_service = EmbeddingService.create(provider=provider, cache_manager=cache_manager)
    query_builder = HybridQueryBuilder.create(embedding_service)
    if search_store is None:
        search_store = PostgresSearchStore.create(query_builder)

    worker = EmbeddingWorker(embedding_service, search_store)
    queue_manager = EmbeddingQueueManager(job_store, handlers=worker.handlers())
    index_writer = IndexWriter(
        search_store,
        embedding_service,
        queue_manager,
        server_id=server_id or settings.server_id,
    )
    search_service = HybridSearchService(query_builder, search_store)
    handler = SearchHandler(search_service, index_writer, queue_manager, embedding_service, cache_manager)

    app.state.search_handler = handler
    app.state.search_service = search_service
    app.state.index_writer = index_writer
    app.state.queue_manager = queue_manager
    app.state.embedding_service = embedding_service
    app.state.cache_manager = cache_manager
    app.state.embedding_provider = provider
    app.state.search_store = search_store
    return handler


def unwire_services(app: FastAPI) -> None:
    """Close the provider and remove all services from app.state."""
    provider = getattr(app.state, "embedding_provider", None)
    close = getattr(provider, "close", None)
    if close is not None:
        close()
    for key in _STATE_KEYS:
        if hasattr(app.state, key):
            delattr(app.state, key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app.

    Initializes all layers from settings and stores them in app.state:
    1. Repositories (provider, cache, job store, search store)
    2. Services (embeddings, queue, indexing, search)
    3. Handler (HTTP endpoints) - stored in app.state.search_handler

    Args:
        app: The FastAPI application instance

    Yields:
        None

    Cleanup:
        Removes all services from app.state on shutdown
    """
    configure_logging()
    provider = build_provider()
    wire_services(
        app,
        provider=provider,
        cache=build_cache(),
        job_store=RedisJobStore.create(),
    )
    logger.info(
        "Hybrid search initialized (provider=%s, model=%s, queue=%s, cache=%s)",
        settings.embedding.provider,
        provider.model_name,
        "on" if settings.queue.enabled else "off",
        settings.cache.backend if settings.cache.enabled else "off",
    )

    yield

    unwire_services(app)
    logger.info("Hybrid search shut down")


# Type aliases for cleaner dependency injection
HandlerDep = Annotated[SearchHandler, Depends(get_handler)]
