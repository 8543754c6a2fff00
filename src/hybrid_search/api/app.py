"""FastAPI application for hybrid search.

Routes are thin: every endpoint delegates to SearchHandler, which is
created by the lifespan and injected through ``HandlerDep``.
"""

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hybrid_search.api.dependencies import HandlerDep, lifespan as default_lifespan
from hybrid_search.config import settings
from hybrid_search.dto import (
    DeleteItemsRequest,
    DeleteItemsResponse,
    HealthCheckResponse,
    IndexItemsRequest,
    IndexItemsResponse,
    ProcessQueueRequest,
    ProcessQueueResponse,
    SearchRequest,
    SearchResponse,
)


def create_app(lifespan=None) -> FastAPI:
    """Create the API application.

    Args:
        lifespan: Lifespan context manager wiring app.state. Defaults to the
            settings-driven one; tests pass their own with in-memory backends.

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Hybrid Search API",
        description="Full-text search fused with vector similarity on PostgreSQL and pgvector",
        version="0.1.0",
        lifespan=lifespan or default_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": "Hybrid Search API",
            "version": "0.1.0",
            "endpoints": {
                "health": "/health",
                "search": "/search",
                "items": "/indexes/{index_id}/items",
                "queue": "/queue/process",
                "docs": "/docs",
            },
        }

    @app.get("/health", response_model=HealthCheckResponse)
    async def health(handler: HandlerDep) -> HealthCheckResponse:
        """Health check endpoint."""
        return await handler.health_check()

    @app.post("/search", response_model=SearchResponse)
    async def search(request: SearchRequest, handler: HandlerDep) -> SearchResponse:
        """Search an index with full-text, vector or hybrid ranking.

        Falls back to full-text when embeddings are unavailable; the
        response then has ``degraded`` set and a user-facing message.
        """
        return await handler.search(request)

    @app.post("/indexes/{index_id}/items", response_model=IndexItemsResponse)
    async def index_items(index_id: str, request: IndexItemsRequest, handler: HandlerDep) -> IndexItemsResponse:
        """Index (insert or replace) a batch of items."""
        return await handler.index_items(index_id, request)

    @app.delete("/indexes/{index_id}/items", response_model=DeleteItemsResponse)
    async def delete_items(index_id: str, request: DeleteItemsRequest, handler: HandlerDep) -> DeleteItemsResponse:
        """Remove items from an index."""
        return await handler.delete_items(index_id, request)

    @app.post("/queue/process", response_model=ProcessQueueResponse)
    async def process_queue(handler: HandlerDep, request: ProcessQueueRequest | None = None) -> ProcessQueueResponse:
        """Run one bounded embedding queue processing round."""
        return await handler.process_queue(request or ProcessQueueRequest())

    @app.get("/queue/stats", response_model=dict[str, Any])
    async def queue_stats(handler: HandlerDep) -> dict[str, Any]:
        """Get embedding queue statistics."""
        return await handler.queue_stats()

    @app.get("/cache/stats", response_model=dict[str, Any])
    async def cache_stats(handler: HandlerDep) -> dict[str, Any]:
        """Get embedding cache and generation statistics."""
        return await handler.cache_stats()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hybrid_search.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
