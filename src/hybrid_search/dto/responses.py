"""Response DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from hybrid_search.entities import SearchMode


class SearchResultItem(BaseModel):
    """Single search hit (in items array)."""

    item_id: str = Field(..., description="The matched item id")
    score: float = Field(..., description="Fused score used for ordering")
    text_rank: float | None = Field(None, description="Full-text rank, null when the text did not match")
    vector_similarity: float | None = Field(
        None,
        description="Cosine similarity (1 = identical, 0 = unrelated)",
        ge=0.0,
        le=1.0,
    )
    language: str = Field(..., description="Item language")
    datasource: str = Field(..., description="Item origin")
    fields: dict[str, Any] = Field(default_factory=dict, description="Stored field values")


class SearchResponse(BaseModel):
    """Response DTO for a search.

    ``mode`` differs from ``requested_mode`` when vector search was
    unavailable and the query ran as full-text search; ``messages`` then
    tells the user why.
    """

    index_id: str = Field(..., description="The searched index")
    query: str = Field(..., description="The original query")
    mode: SearchMode = Field(..., description="The mode actually executed")
    requested_mode: SearchMode = Field(..., description="The mode that was asked for")
    degraded: bool = Field(..., description="Whether the search fell back to full-text")
    total: int = Field(..., description="Total matches before paging", ge=0)
    items: list[SearchResultItem] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list, description="User-facing notices")
    search_time_ms: float = Field(..., description="Time taken for the search in milliseconds")


class IndexItemsResponse(BaseModel):
    """Response DTO for indexing a batch."""

    index_id: str
    indexed: int = Field(..., description="Rows written", ge=0)
    embedded: list[str] = Field(default_factory=list, description="Items stored with an embedding")
    queued: list[str] = Field(default_factory=list, description="Items whose embedding was queued")
    without_embedding: list[str] = Field(
        default_factory=list,
        description="Items only reachable through full-text search",
    )
    messages: list[str] = Field(default_factory=list, description="User-facing notices")


class DeleteItemsResponse(BaseModel):
    index_id: str
    deleted: int = Field(..., ge=0)


class ProcessQueueResponse(BaseModel):
    """Response DTO for a queue processing round."""

    processed: int = Field(..., description="Items handled successfully", ge=0)
    failed: int = Field(..., description="Items released back to the queue", ge=0)
    elapsed_time: float = Field(..., description="Seconds spent")
    remaining_items: int = Field(..., description="Pending items left (-1 if unknown)")
    errors: list[str] = Field(default_factory=list, description="First errors of the round")


class HealthCheckResponse(BaseModel):
    """Response DTO for health check."""

    status: str = Field(..., description="Health status: 'healthy' or 'degraded'")
    embedding_healthy: bool = Field(..., description="Whether the embedding provider is reachable")
    circuit_state: str = Field(..., description="Embedding circuit breaker state")
    queue_enabled: bool = Field(..., description="Whether the embedding queue is on")
    cache_enabled: bool = Field(..., description="Whether the embedding cache is on")
