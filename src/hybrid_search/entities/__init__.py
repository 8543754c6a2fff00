"""Domain entities for internal representation.

These are pure dataclasses used internally by services and repositories.
They are NOT used for API contracts - use DTOs from the dto package for
that.
"""

from .cache_entry import CacheEntry, MaintenanceResult
from .index_item import IndexField, IndexingReport, IndexItem, IndexRow
from .queue_item import ClaimedJob, QueueItem, QueueOperation
from .search import HybridSearchRequest, ScoredItem, SearchMode, SearchPlan, SearchResult

__all__ = [
    "CacheEntry",
    "MaintenanceResult",
    "IndexField",
    "IndexItem",
    "IndexRow",
    "IndexingReport",
    "ClaimedJob",
    "QueueItem",
    "QueueOperation",
    "HybridSearchRequest",
    "ScoredItem",
    "SearchMode",
    "SearchPlan",
    "SearchResult",
]
