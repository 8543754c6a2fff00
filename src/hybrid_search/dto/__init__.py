"""Data Transfer Objects for API contracts.

These Pydantic models define the external API contract.
They are used for request/response validation and serialization.

Internal domain logic should use entities from the entities package.
"""

from .requests import (
    DeleteItemsRequest,
    IndexFieldPayload,
    IndexItemPayload,
    IndexItemsRequest,
    ProcessQueueRequest,
    SearchRequest,
)
from .responses import (
    DeleteItemsResponse,
    HealthCheckResponse,
    IndexItemsResponse,
    ProcessQueueResponse,
    SearchResponse,
    SearchResultItem,
)

__all__ = [
    "SearchRequest",
    "IndexFieldPayload",
    "IndexItemPayload",
    "IndexItemsRequest",
    "DeleteItemsRequest",
    "ProcessQueueRequest",
    "SearchResultItem",
    "SearchResponse",
    "IndexItemsResponse",
    "DeleteItemsResponse",
    "ProcessQueueResponse",
    "HealthCheckResponse",
]
