"""Search request, plan and result entities."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hybrid_search.degradation import DegradationEvent


class SearchMode(str, Enum):
    TEXT_ONLY = "text_only"
    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class HybridSearchRequest:
    """A search query against one index.

    Weights and threshold left as None are filled from settings by the
    query builder.

    Attributes:
        index_id: Index to search
        query: Full-text query; empty means browse all rows
        filters: Field name -> value, or list of accepted values
        languages: Only rows in these languages (empty = all)
        text_weight: Weight of the full-text rank in the fused score
        vector_weight: Weight of the vector similarity in the fused score
        similarity_threshold: Minimum similarity for vector-only candidates
        limit: Page size
        offset: Page start
        mode: text_only, vector_only or hybrid
    """

    index_id: str
    query: str = ""
    filters: dict[str, Any] = field(default_factory=dict)
    languages: tuple[str, ...] = ()
    text_weight: float | None = None
    vector_weight: float | None = None
    similarity_threshold: float | None = None
    limit: int = 10
    offset: int = 0
    mode: SearchMode | None = None


@dataclass(frozen=True)
class SearchPlan:
    """A request resolved into something a search store can execute.

    ``mode`` is the mode actually executed; ``requested_mode`` is what the
    caller asked for. They differ when the plan fell back to text search,
    in which case ``degradation`` explains why.
    """

    index_id: str
    mode: SearchMode
    requested_mode: SearchMode
    query: str
    filters: dict[str, Any]
    languages: tuple[str, ...]
    text_weight: float
    vector_weight: float
    similarity_threshold: float
    limit: int
    offset: int
    query_embedding: list[float] | None = None
    degradation: DegradationEvent | None = None

    @property
    def is_browse(self) -> bool:
        return not self.query.strip()

    @property
    def degraded(self) -> bool:
        return self.mode is not self.requested_mode


@dataclass(frozen=True)
class ScoredItem:
    """A ranked result row.

    Attributes:
        item_id: Row id
        score: Fused score used for ordering
        text_rank: Full-text rank, None when the row did not match the text
        vector_similarity: 1 - cosine distance in [0, 1], None without embedding
        fields: Stored field values
        language: Row language
        datasource: Row datasource
    """

    item_id: str
    score: float
    text_rank: float | None = None
    vector_similarity: float | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    language: str = "und"
    datasource: str = "default"


@dataclass(frozen=True)
class SearchResult:
    """Outcome of executing a plan."""

    items: list[ScoredItem]
    total: int
    mode: SearchMode
    requested_mode: SearchMode
    messages: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return self.mode is not self.requested_mode
