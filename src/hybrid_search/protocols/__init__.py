"""Protocol interfaces for swappable implementations.

This package contains protocol definitions using structural typing.
Protocols enable:
- Easy swapping of implementations (SQL -> in-memory cache, Redis -> in-process queue)
- Unit testing with in-memory implementations
- Clear separation of concerns

Usage:
    ```python
    from hybrid_search.protocols import EmbeddingCache, JobStore

    cache: EmbeddingCache = DatabaseEmbeddingCache.create()  # works
    cache: EmbeddingCache = MemoryEmbeddingCache()            # also works
    ```
"""

from .embedding_cache import EmbeddingCache
from .embedding_provider import EmbeddingProvider
from .job_store import JobStore
from .search_store import SearchStore

__all__ = [
    "EmbeddingCache",
    "EmbeddingProvider",
    "JobStore",
    "SearchStore",
]
