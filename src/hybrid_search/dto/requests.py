"""Request DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from hybrid_search.entities import SearchMode


class SearchRequest(BaseModel):
    """Request DTO for searching an index.

    The handler will convert this to a HybridSearchRequest for the service layer.
    """

    index_id: str = Field(..., description="The index to search", min_length=1)
    query: str = Field("", description="Full-text query (empty lists every item)")
    filters: dict[str, Any] = Field(
        default_factory=dict,
        description="Field name -> value or list of accepted values",
    )
    languages: list[str] = Field(default_factory=list, description="Restrict to these languages")
    mode: SearchMode | None = Field(None, description="text_only, vector_only or hybrid")
    text_weight: float | None = Field(None, description="Override the full-text weight", ge=0.0)
    vector_weight: float | None = Field(None, description="Override the vector weight", ge=0.0)
    similarity_threshold: float | None = Field(
        None,
        description="Minimum cosine similarity for vector candidates (0-1)",
        ge=0.0,
        le=1.0,
    )
    limit: int = Field(10, description="Page size", ge=0, le=1000)
    offset: int = Field(0, description="Page start", ge=0)


class IndexFieldPayload(BaseModel):
    name: str = Field(..., min_length=1)
    value: Any = Field(None, description="Scalar or list of scalars")
    searchable: bool = Field(True, description="Whether the value feeds full-text and embeddings")


class IndexItemPayload(BaseModel):
    """One item to index."""

    item_id: str = Field(..., description="Unique id within the index", min_length=1)
    datasource: str = Field("default", description="Origin of the item")
    language: str = Field("und", description="Language code")
    fields: list[IndexFieldPayload] = Field(default_factory=list)
    embedding: list[float] | None = Field(None, description="Optional precomputed embedding")


class IndexItemsRequest(BaseModel):
    """Request DTO for indexing a batch of items."""

    items: list[IndexItemPayload] = Field(..., description="Items to index", min_length=1)


class DeleteItemsRequest(BaseModel):
    """Request DTO for removing items from an index."""

    item_ids: list[str] = Field(..., description="Ids to delete", min_length=1)


class ProcessQueueRequest(BaseModel):
    """Request DTO for running one queue processing round."""

    max_items: int | None = Field(None, description="Items to handle (default: queue batch size)", ge=1)
    time_budget: float | None = Field(
        None,
        description="Seconds to spend (default: queue max processing time)",
        gt=0.0,
    )
