"""PostgreSQL implementation of SearchStore.

One table per index:
    item_id            primary key
    datasource, language
    fields             JSONB of all field values (structural filters)
    search_text        concatenated searchable fields
    search_vector      TSVECTOR generated from search_text
    content_embedding  pgvector VECTOR(dim), NULL until an embedding exists

A GIN index serves full-text matching and an HNSW (or IVFFlat) index with
cosine operators serves vector similarity. Ranking SQL comes from the
HybridQueryBuilder.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, Computed, Index, MetaData, String, Table, Text, delete, select, text, update
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from hybrid_search.config import get_engine, settings
from hybrid_search.degradation import DegradationEvent, DegradationKind, classify_exception
from hybrid_search.entities import IndexRow, ScoredItem, SearchPlan
from hybrid_search.services.query_builder import HybridQueryBuilder, validate_identifier

logger = logging.getLogger(__name__)


class PostgresSearchStore:
    """tsvector + pgvector search store.

    This class satisfies the SearchStore protocol through structural typing -
    no explicit inheritance needed.

    Example:
        ```python
        store = PostgresSearchStore.create(query_builder=builder)
        store.ensure_index("articles", dimension=1536)
        items, total = store.search(builder.plan(request))
        ```
    """

    def __init__(
        self,
        engine: Engine,
        query_builder: HybridQueryBuilder,
        table_prefix: str | None = None,
        dimension: int | None = None,
        vector_index_method: str | None = None,
    ) -> None:
        """Initialize the PostgreSQL search store.

        Args:
            engine: SQLAlchemy engine for PostgreSQL with pgvector.
            query_builder: Renders plans as SQL.
            table_prefix: Prefix for index tables. Defaults to settings.
            dimension: Embedding dimension for tables not created by
                ensure_index in this process. Defaults to settings.
            vector_index_method: "hnsw" or "ivfflat". Defaults to settings.
        """
        cfg = settings.hybrid
        self._engine = engine
        self._builder = query_builder
        self._prefix = table_prefix or cfg.index_table_prefix
        self._dimension = dimension or settings.embedding.dimension
        self._method = vector_index_method or cfg.vector_index_method
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}

    @classmethod
    def create(cls, query_builder: HybridQueryBuilder, engine: Engine | None = None) -> "PostgresSearchStore":
        """Factory method to create PostgresSearchStore with defaults."""
        return cls(engine=engine or get_engine(), query_builder=query_builder)

    def table_name(self, index_id: str) -> str:
        return validate_identifier(f"{self._prefix}{index_id}")

    def ensure_index(self, index_id: str, dimension: int) -> None:
        table = self._table(index_id, dimension)
        with self._database("ensure index"), self._engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            self._metadata.create_all(conn, tables=[table])
        logger.info("Search index table %s ready (dimension %d)", table.name, dimension)

    def drop_index(self, index_id: str) -> None:
        table = self._table(index_id)
        with self._database("drop index"), self._engine.begin() as conn:
            table.drop(conn, checkfirst=True)
        self._metadata.remove(table)
        self._tables.pop(index_id, None)

    def replace_rows(self, index_id: str, rows: list[IndexRow]) -> int:
        if not rows:
            return 0
        table = self._table(index_id)
        values = [
            {
                "item_id": row.item_id,
                "datasource": row.datasource,
                "language": row.language,
                "fields": row.fields,
                "search_text": row.search_text,
                "content_embedding": row.embedding,
            }
            for row in rows
        ]
        with self._database("write rows"), self._engine.begin() as conn:
            conn.execute(delete(table).where(table.c.item_id.in_([row.item_id for row in rows])))
            conn.execute(table.insert(), values)
        return len(rows)

    def delete_rows(self, index_id: str, item_ids: list[str]) -> int:
        if not item_ids:
            return 0
        table = self._table(index_id)
        with self._database("delete rows"), self._engine.begin() as conn:
            return conn.execute(delete(table).where(table.c.item_id.in_(item_ids))).rowcount

    def update_embedding(self, index_id: str, item_id: str, vector: list[float]) -> bool:
        table = self._table(index_id)
        with self._database("update embedding"), self._engine.begin() as conn:
            result = conn.execute(
                update(table).where(table.c.item_id == item_id).values(content_embedding=vector)
            )
        return result.rowcount > 0

    def fetch_texts(self, index_id: str, limit: int, offset: int) -> list[tuple[str, str]]:
        table = self._table(index_id)
        stmt = (
            select(table.c.item_id, table.c.search_text)
            .order_by(table.c.item_id.asc())
            .limit(limit)
            .offset(offset)
        )
        with self._database("fetch texts"), self._engine.connect() as conn:
            return [(row.item_id, row.search_text) for row in conn.execute(stmt)]

    def count(self, index_id: str) -> int:
        table_name = self.table_name(index_id)
        with self._database("count"), self._engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {table_name}")).scalar_one()

    def search(self, plan: SearchPlan) -> tuple[list[ScoredItem], int]:
        table_name = self.table_name(plan.index_id)
        sql, params = self._builder.build_sql(plan, table_name)
        count_sql, count_params = self._builder.build_count_sql(plan, table_name)
        with self._database("search", plan), self._engine.connect() as conn:
            rows = conn.execute(text(sql), params).all()
            total = conn.execute(text(count_sql), count_params).scalar_one()

        items = [
            ScoredItem(
                item_id=row.item_id,
                score=float(row.fused_score),
                text_rank=None if row.text_rank is None else float(row.text_rank),
                vector_similarity=None if row.vector_similarity is None else float(row.vector_similarity),
                fields=dict(row.fields or {}),
                language=row.language,
                datasource=row.datasource,
            )
            for row in rows
        ]
        return items, int(total)

    def _table(self, index_id: str, dimension: int | None = None) -> Table:
        if index_id in self._tables and dimension is None:
            return self._tables[index_id]
        name = self.table_name(index_id)
        if name in self._metadata.tables:
            self._metadata.remove(self._metadata.tables[name])

        vector_index = Index(
            f"{name}_embedding_idx",
            "content_embedding",
            postgresql_using=self._method,
            postgresql_ops={"content_embedding": "vector_cosine_ops"},
            postgresql_with=(
                {"m": settings.hybrid.hnsw_m, "ef_construction": settings.hybrid.hnsw_ef_construction}
                if self._method == "hnsw"
                else {"lists": settings.hybrid.ivfflat_lists}
            ),
        )
        table = Table(
            name,
            self._metadata,
            Column("item_id", String(255), primary_key=True),
            Column("datasource", String(255), nullable=False),
            Column("language", String(12), nullable=False),
            Column("fields", JSONB, nullable=False, default=dict),
            Column("search_text", Text, nullable=False, default=""),
            Column(
                "search_vector",
                TSVECTOR,
                Computed(
                    f"to_tsvector('{self._builder.fts_configuration}'::regconfig, search_text)",
                    persisted=True,
                ),
            ),
            Column("content_embedding", Vector(dimension or self._dimension), nullable=True),
            Index(f"{name}_search_vector_idx", "search_vector", postgresql_using="gin"),
            Index(f"{name}_language_idx", "language"),
            vector_index,
        )
        self._tables[index_id] = table
        return table

    @contextmanager
    def _database(self, operation: str, plan: SearchPlan | None = None) -> Iterator[None]:
        """Re-raise SQLAlchemy errors as degradation events.

        Failures of plans that touch embeddings count as vector degradation
        so the search service can retry as text-only.
        """
        try:
            yield
        except SQLAlchemyError as e:
            context = {"operation": operation}
            if plan is not None and plan.query_embedding is not None and "connection" not in str(e).lower():
                raise DegradationEvent.create(
                    DegradationKind.VECTOR_SEARCH_DEGRADED, f"{operation}: {e}", context
                ) from e
            raise classify_exception(e, context) from e
