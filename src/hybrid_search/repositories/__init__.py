"""Repository layer for data access.

This layer abstracts external dependencies (PostgreSQL, Redis, embedding
APIs) behind protocol-based interfaces. This enables:
- Easy swapping of implementations (SQL -> in-memory, Redis -> in-process)
- Unit testing with in-memory implementations
- Clear separation of concerns

The repositories are protocol-based (structural typing), not inheritance-based.
Any class implementing the required methods will satisfy the protocol.

LocalEmbeddingProvider is not re-exported here because importing it loads
sentence-transformers; import it from its module when needed.
"""

from hybrid_search.protocols import EmbeddingCache, EmbeddingProvider, JobStore, SearchStore

from .database_embedding_cache import DatabaseEmbeddingCache
from .memory_embedding_cache import MemoryEmbeddingCache
from .memory_job_store import MemoryJobStore
from .memory_search_store import MemorySearchStore
from .ollama_embedding_provider import OllamaEmbeddingProvider
from .openai_embedding_provider import OpenAIEmbeddingProvider
from .postgres_search_store import PostgresSearchStore
from .redis_job_store import RedisJobStore

__all__ = [
    "EmbeddingCache",
    "EmbeddingProvider",
    "JobStore",
    "SearchStore",
    "DatabaseEmbeddingCache",
    "MemoryEmbeddingCache",
    "MemoryJobStore",
    "MemorySearchStore",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "PostgresSearchStore",
    "RedisJobStore",
]
