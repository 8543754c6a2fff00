"""Hybrid query planning and SQL rendering.

The builder turns a ``HybridSearchRequest`` into a ``SearchPlan``:

1. Resolve mode, weights and threshold (request values win over settings)
2. An empty query becomes a text-only "browse" plan
3. Vector and hybrid modes need a query embedding, generated synchronously
   (from cache when possible). Any failure turns the plan into text-only
   and records the degradation on the plan instead of raising.

``build_sql`` renders a plan as one parameterised PostgreSQL statement
fusing ``ts_rank`` with pgvector cosine similarity.
"""

import logging
import re
from dataclasses import replace
from typing import Any

from hybrid_search.config import settings
from hybrid_search.degradation import (
    DegradationEvent,
    DegradationKind,
    classify_exception,
    log_degradation,
)
from hybrid_search.entities import HybridSearchRequest, SearchMode, SearchPlan
from hybrid_search.services.embedding_service import EmbeddingService
from hybrid_search.utils import accepted_values

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is safe to splice into SQL as an identifier.

    Raises:
        ValueError: For anything but letters, digits and underscores
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def vector_literal(vector: list[float]) -> str:
    """pgvector text representation, e.g. ``[0.1,0.2]``."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


class HybridQueryBuilder:
    """Plans hybrid searches and renders them as SQL.

    Example:
        ```python
        builder = HybridQueryBuilder.create(embedding_service)
        plan = builder.plan(HybridSearchRequest(index_id="articles", query="machine learning"))
        sql, params = builder.build_sql(plan, "search_index_articles")
        ```
    """

    def __init__(
        self,
        embedding_service: EmbeddingService | None,
        text_weight: float | None = None,
        vector_weight: float | None = None,
        similarity_threshold: float | None = None,
        default_mode: SearchMode | str | None = None,
        fts_configuration: str | None = None,
    ) -> None:
        """Initialize the query builder.

        Args:
            embedding_service: Generates query embeddings. None disables
                vector search entirely.
            text_weight: Default full-text weight. Defaults to settings.
            vector_weight: Default vector weight. Defaults to settings.
            similarity_threshold: Default minimum similarity. Defaults to settings.
            default_mode: Mode when the request has none. Defaults to settings.
            fts_configuration: PostgreSQL text search configuration.
        """
        cfg = settings.hybrid
        self._embeddings = embedding_service
        self._text_weight = cfg.text_weight if text_weight is None else text_weight
        self._vector_weight = cfg.vector_weight if vector_weight is None else vector_weight
        self._threshold = cfg.similarity_threshold if similarity_threshold is None else similarity_threshold
        self._default_mode = SearchMode(default_mode or cfg.default_mode)
        self._fts_configuration = validate_identifier(fts_configuration or cfg.fts_configuration)

    @classmethod
    def create(cls, embedding_service: EmbeddingService | None, **kwargs: Any) -> "HybridQueryBuilder":
        """Factory method to create HybridQueryBuilder with settings defaults."""
        return cls(embedding_service=embedding_service, **kwargs)

    @property
    def fts_configuration(self) -> str:
        return self._fts_configuration

    def plan(self, request: HybridSearchRequest) -> SearchPlan:
        """Resolve a request into an executable plan.

        Args:
            request: The search request

        Returns:
            SearchPlan. Never raises for embedding failures.

        Raises:
            ValueError: For negative weights, a threshold outside [0, 1]
                or a negative limit/offset
        """
        text_weight = self._text_weight if request.text_weight is None else request.text_weight
        vector_weight = self._vector_weight if request.vector_weight is None else request.vector_weight
        threshold = self._threshold if request.similarity_threshold is None else request.similarity_threshold
        if text_weight < 0 or vector_weight < 0:
            raise ValueError("Search weights must be non-negative")
        if not 0 <= threshold <= 1:
            raise ValueError("similarity_threshold must be between 0 and 1")
        if request.limit < 0 or request.offset < 0:
            raise ValueError("limit and offset must be non-negative")

        requested = SearchMode(request.mode or self._default_mode)
        query = request.query.strip()
        plan = SearchPlan(
            index_id=request.index_id,
            mode=requested,
            requested_mode=requested,
            query=query,
            filters=dict(request.filters),
            languages=tuple(request.languages),
            text_weight=text_weight,
            vector_weight=vector_weight,
            similarity_threshold=threshold,
            limit=request.limit,
            offset=request.offset,
        )

        if not query:
            return replace(plan, mode=SearchMode.TEXT_ONLY, requested_mode=SearchMode.TEXT_ONLY)
        if requested is SearchMode.TEXT_ONLY:
            return plan

        if self._embeddings is None:
            event = DegradationEvent.create(
                DegradationKind.VECTOR_SEARCH_DEGRADED, "no embedding service configured"
            )
            return self.as_text_only(plan, event)
        try:
            embedding = self._embeddings.embed_query(query)
        except Exception as e:
            # Query embeddings are never queued; degrade to text instead
            return self.as_text_only(plan, classify_exception(e, {"operation": "query embedding"}))
        return replace(plan, query_embedding=embedding)

    def as_text_only(self, plan: SearchPlan, event: DegradationEvent) -> SearchPlan:
        """Fall back to full-text search, keeping the requested mode for reporting."""
        log_degradation(logger, event)
        return replace(plan, mode=SearchMode.TEXT_ONLY, query_embedding=None, degradation=event)

    def build_sql(self, plan: SearchPlan, table: str) -> tuple[str, dict[str, Any]]:
        """Render the page query for a plan.

        Result columns: item_id, datasource, language, fields, text_rank,
        vector_similarity, fused_score. Ordered by fused_score descending,
        then item_id ascending (item_id only for browse plans).

        Args:
            plan: The plan to render
            table: Index table name (validated)

        Returns:
            (sql, params) for ``sqlalchemy.text``
        """
        ranked, params = self._ranked(plan, validate_identifier(table))
        order = "item_id ASC" if plan.is_browse else "fused_score DESC, item_id ASC"
        params.update(limit=plan.limit, offset=plan.offset)
        sql = (
            f"SELECT item_id, datasource, language, fields, text_rank, vector_similarity, fused_score "
            f"FROM ({ranked}) AS ranked ORDER BY {order} LIMIT :limit OFFSET :offset"
        )
        return sql, params

    def build_count_sql(self, plan: SearchPlan, table: str) -> tuple[str, dict[str, Any]]:
        """Render a query counting every row the plan matches."""
        ranked, params = self._ranked(plan, validate_identifier(table))
        return f"SELECT COUNT(*) FROM ({ranked}) AS ranked", params

    def _ranked(self, plan: SearchPlan, table: str) -> tuple[str, dict[str, Any]]:
        params: dict[str, Any] = {}
        where = self._filter_clauses(plan, params)
        columns = "item_id, datasource, language, fields"

        if plan.is_browse:
            return (
                f"SELECT {columns}, CAST(1.0 AS double precision) AS text_rank, "
                f"CAST(NULL AS double precision) AS vector_similarity, "
                f"CAST(1.0 AS double precision) AS fused_score "
                f"FROM {table}{self._where(where)}"
            ), params

        tsquery = "plainto_tsquery(CAST(:fts_config AS regconfig), :query)"
        similarity = (
            "GREATEST(0.0, LEAST(1.0, 1.0 - (content_embedding <=> CAST(:query_embedding AS vector))))"
        )
        params.update(fts_config=self._fts_configuration, query=plan.query)

        if plan.mode is SearchMode.TEXT_ONLY:
            rank = f"CAST(ts_rank(search_vector, {tsquery}) AS double precision)"
            return (
                f"SELECT {columns}, {rank} AS text_rank, "
                f"CAST(NULL AS double precision) AS vector_similarity, {rank} AS fused_score "
                f"FROM {table}{self._where([f'search_vector @@ {tsquery}', *where])}"
            ), params

        if plan.query_embedding is None:
            raise ValueError(f"{plan.mode.value} plan has no query embedding")
        params.update(query_embedding=vector_literal(plan.query_embedding), threshold=plan.similarity_threshold)

        if plan.mode is SearchMode.VECTOR_ONLY:
            conditions = ["content_embedding IS NOT NULL", f"{similarity} >= :threshold", *where]
            return (
                f"SELECT {columns}, CAST(NULL AS double precision) AS text_rank, "
                f"{similarity} AS vector_similarity, {similarity} AS fused_score "
                f"FROM {table}{self._where(conditions)}"
            ), params

        params.update(text_weight=plan.text_weight, vector_weight=plan.vector_weight)
        scored = (
            f"SELECT {columns}, "
            f"CASE WHEN search_vector @@ {tsquery} "
            f"THEN CAST(ts_rank(search_vector, {tsquery}) AS double precision) END AS text_rank, "
            f"CASE WHEN content_embedding IS NOT NULL THEN {similarity} END AS vector_similarity "
            f"FROM {table}{self._where(where)}"
        )
        return (
            f"SELECT {columns}, text_rank, vector_similarity, "
            f"COALESCE(:text_weight * text_rank, 0) + COALESCE(:vector_weight * vector_similarity, 0) "
            f"AS fused_score FROM ({scored}) AS scored "
            f"WHERE text_rank IS NOT NULL OR vector_similarity >= :threshold"
        ), params

    @staticmethod
    def _filter_clauses(plan: SearchPlan, params: dict[str, Any]) -> list[str]:
        clauses = []
        for i, (name, value) in enumerate(sorted(plan.filters.items())):
            params[f"filter_{i}_name"] = name
            params[f"filter_{i}_values"] = accepted_values(value)
            clauses.append(
                f"((fields ->> :filter_{i}_name) = ANY(:filter_{i}_values) "
                f"OR (jsonb_typeof(fields -> :filter_{i}_name) = 'array' "
                f"AND (fields -> :filter_{i}_name) ?| CAST(:filter_{i}_values AS text[])))"
            )
        if plan.languages:
            params["languages"] = list(plan.languages)
            clauses.append("language = ANY(:languages)")
        return clauses

    @staticmethod
    def _where(conditions: list[str]) -> str:
        return f" WHERE {' AND '.join(conditions)}" if conditions else ""
