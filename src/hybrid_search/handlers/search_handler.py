"""HTTP handlers for search, indexing and queue operations.

Handlers convert between DTOs (API contracts) and service calls.
They handle HTTP concerns like status codes, validation, and error handling.
"""

import logging
import time

from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool

from hybrid_search.degradation import DegradationEvent, log_degradation
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
    SearchResultItem,
)
from hybrid_search.entities import HybridSearchRequest, IndexField, IndexItem
from hybrid_search.services import (
    EmbeddingCacheManager,
    EmbeddingQueueManager,
    EmbeddingService,
    HybridSearchService,
    IndexWriter,
)

logger = logging.getLogger(__name__)


def _unavailable(e: DegradationEvent) -> HTTPException:
    log_degradation(logger, e)
    headers = None
    if e.retry_after is not None:
        headers = {"Retry-After": str(int(e.retry_after))}
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=e.user_message,
        headers=headers,
    )


class SearchHandler:
    """HTTP handlers for the hybrid search API.

    This handler delegates business logic to the service layer
    and handles HTTP-specific concerns like:
    - Converting DTOs to entities and back
    - Mapping degradations to 503 and bad input to 400
    - Running blocking service calls off the event loop

    Example:
        ```python
        handler = SearchHandler(search_service, index_writer, queue_manager, embedding_service, cache_manager)

        @app.post("/search", response_model=SearchResponse)
        async def search(request: SearchRequest):
            return await handler.search(request)
        ```
    """

    def __init__(
        self,
        search_service: HybridSearchService,
        index_writer: IndexWriter,
        queue_manager: EmbeddingQueueManager,
        embedding_service: EmbeddingService,
        cache_manager: EmbeddingCacheManager,
    ) -> None:
        self._search = search_service
        self._writer = index_writer
        self._queue = queue_manager
        self._embeddings = embedding_service
        self._cache = cache_manager

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Handle POST /search requests.

        Raises:
            HTTPException: 400 for invalid parameters, 503 when search is unavailable
        """
        start_time = time.time()
        query = HybridSearchRequest(
            index_id=request.index_id,
            query=request.query,
            filters=request.filters,
            languages=tuple(request.languages),
            text_weight=request.text_weight,
            vector_weight=request.vector_weight,
            similarity_threshold=request.similarity_threshold,
            limit=request.limit,
            offset=request.offset,
            mode=request.mode,
        )
        try:
            result = await run_in_threadpool(self._search.search, query)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
        except DegradationEvent as e:
            raise _unavailable(e) from e

        return SearchResponse(
            index_id=request.index_id,
            query=request.query,
            mode=result.mode,
            requested_mode=result.requested_mode,
            degraded=result.degraded,
            total=result.total,
            items=[
                SearchResultItem(
                    item_id=item.item_id,
                    score=item.score,
                    text_rank=item.text_rank,
                    vector_similarity=item.vector_similarity,
                    language=item.language,
                    datasource=item.datasource,
                    fields=item.fields,
                )
                for item in result.items
            ],
            messages=list(result.messages),
            search_time_ms=(time.time() - start_time) * 1000,
        )

    async def index_items(self, index_id: str, request: IndexItemsRequest) -> IndexItemsResponse:
        """Handle POST /indexes/{index_id}/items requests."""
        items = [
            IndexItem(
                item_id=payload.item_id,
                datasource=payload.datasource,
                language=payload.language,
                fields=tuple(IndexField(f.name, f.value, f.searchable) for f in payload.fields),
                embedding=payload.embedding,
            )
            for payload in request.items
        ]

        def write():
            self._writer.ensure_index(index_id)
            return self._writer.index_items(index_id, items)

        try:
            report = await run_in_threadpool(write)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
        except DegradationEvent as e:
            raise _unavailable(e) from e

        return IndexItemsResponse(
            index_id=index_id,
            indexed=len(report.indexed),
            embedded=report.embedded,
            queued=report.queued,
            without_embedding=report.without_embedding,
            messages=report.messages,
        )

    async def delete_items(self, index_id: str, request: DeleteItemsRequest) -> DeleteItemsResponse:
        """Handle DELETE /indexes/{index_id}/items requests."""
        try:
            deleted = await run_in_threadpool(self._writer.delete_items, index_id, request.item_ids)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
        except DegradationEvent as e:
            raise _unavailable(e) from e
        return DeleteItemsResponse(index_id=index_id, deleted=deleted)

    async def process_queue(self, request: ProcessQueueRequest) -> ProcessQueueResponse:
        """Handle POST /queue/process requests.

        Item failures are reported in the body; the round itself never fails.
        """
        result = await run_in_threadpool(self._queue.process_queue, request.max_items, request.time_budget)
        return ProcessQueueResponse(**result)

    async def queue_stats(self) -> dict:
        return await run_in_threadpool(self._queue.get_queue_stats)

    async def cache_stats(self) -> dict:
        stats = await run_in_threadpool(self._cache.get_statistics)
        return {"cache": stats, "embeddings": self._embeddings.get_stats()}

    async def health_check(self) -> HealthCheckResponse:
        """Handle GET /health requests.

        The API stays healthy without embeddings since search falls back
        to full-text; the status is then reported as degraded.
        """
        embedding_healthy = await run_in_threadpool(self._embeddings.is_available)
        return HealthCheckResponse(
            status="healthy" if embedding_healthy else "degraded",
            embedding_healthy=embedding_healthy,
            circuit_state=self._embeddings.circuit_breaker.state.value,
            queue_enabled=self._queue.is_queue_enabled_for_server(self._writer.server_id),
            cache_enabled=self._cache.enabled,
        )
