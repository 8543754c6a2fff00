"""Search store protocol.

A search store owns one table per index holding item rows, their
full-text representation and their embeddings, and executes search plans.

Implementations:
- PostgreSQL with tsvector and pgvector
- In-process store with the same ranking semantics
"""

from typing import Protocol, runtime_checkable

from hybrid_search.entities import IndexRow, ScoredItem, SearchPlan


@runtime_checkable
class SearchStore(Protocol):
    """Protocol for search index storage."""

    def ensure_index(self, index_id: str, dimension: int) -> None:
        """Create the index table and its text/vector indexes if missing."""
        ...

    def drop_index(self, index_id: str) -> None:
        """Drop the index table."""
        ...

    def replace_rows(self, index_id: str, rows: list[IndexRow]) -> int:
        """Delete then insert one row per item. Returns rows written."""
        ...

    def delete_rows(self, index_id: str, item_ids: list[str]) -> int:
        """Delete rows by item id. Returns rows deleted."""
        ...

    def update_embedding(self, index_id: str, item_id: str, vector: list[float]) -> bool:
        """Set the embedding of an existing row. Returns False if the row is gone."""
        ...

    def fetch_texts(self, index_id: str, limit: int, offset: int) -> list[tuple[str, str]]:
        """Return (item_id, search_text) pairs ordered by item id."""
        ...

    def search(self, plan: SearchPlan) -> tuple[list[ScoredItem], int]:
        """Execute a plan.

        Returns:
            The requested page of results and the total number of matches

        Raises:
            DegradationEvent: VECTOR_SEARCH_DEGRADED when the vector part of
                the plan cannot run; DATABASE_UNAVAILABLE for storage errors
        """
        ...

    def count(self, index_id: str) -> int:
        """Number of rows in the index."""
        ...
