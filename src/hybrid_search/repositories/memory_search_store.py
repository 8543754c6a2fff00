"""In-process implementation of SearchStore.

Ranks rows with the same rules the PostgreSQL store applies in SQL:

- text match: every query term appears in the row text; the rank is the
  share of row tokens that are query terms
- vector similarity: 1 - cosine distance, clamped to [0, 1]
- hybrid: text-matched rows always qualify, rows with only an embedding
  qualify when their similarity reaches the threshold
"""

from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.entities import IndexRow, ScoredItem, SearchMode, SearchPlan
from hybrid_search.scoring import cosine_similarity, fuse_scores
from hybrid_search.utils import matches_filters, tokenize


def text_rank(query_terms: set[str], text: str) -> float | None:
    """Rank of ``text`` for the query, or None when it does not match."""
    tokens = tokenize(text)
    if not query_terms or not tokens or not query_terms.issubset(tokens):
        return None
    return sum(1 for t in tokens if t in query_terms) / len(tokens)


class MemorySearchStore:
    """Dictionary-backed search store.

    This class satisfies the SearchStore protocol through structural typing -
    no explicit inheritance needed.
    """

    def __init__(self) -> None:
        self._indexes: dict[str, dict[str, IndexRow]] = {}
        self._dimensions: dict[str, int] = {}

    def ensure_index(self, index_id: str, dimension: int) -> None:
        self._indexes.setdefault(index_id, {})
        self._dimensions[index_id] = dimension

    def drop_index(self, index_id: str) -> None:
        self._indexes.pop(index_id, None)
        self._dimensions.pop(index_id, None)

    def replace_rows(self, index_id: str, rows: list[IndexRow]) -> int:
        table = self._indexes.setdefault(index_id, {})
        for row in rows:
            table.pop(row.item_id, None)
        for row in rows:
            table[row.item_id] = row
        return len(rows)

    def delete_rows(self, index_id: str, item_ids: list[str]) -> int:
        table = self._indexes.get(index_id, {})
        return sum(1 for item_id in item_ids if table.pop(item_id, None) is not None)

    def update_embedding(self, index_id: str, item_id: str, vector: list[float]) -> bool:
        table = self._indexes.get(index_id, {})
        row = table.get(item_id)
        if row is None:
            return False
        table[item_id] = IndexRow(
            row.item_id, row.datasource, row.language, row.fields, row.search_text, list(vector)
        )
        return True

    def get_row(self, index_id: str, item_id: str) -> IndexRow | None:
        return self._indexes.get(index_id, {}).get(item_id)

    def fetch_texts(self, index_id: str, limit: int, offset: int) -> list[tuple[str, str]]:
        rows = sorted(self._indexes.get(index_id, {}).values(), key=lambda r: r.item_id)
        return [(r.item_id, r.search_text) for r in rows[offset : offset + limit]]

    def count(self, index_id: str) -> int:
        return len(self._indexes.get(index_id, {}))

    def search(self, plan: SearchPlan) -> tuple[list[ScoredItem], int]:
        if plan.mode is not SearchMode.TEXT_ONLY and plan.query_embedding is None:
            raise DegradationEvent.create(
                DegradationKind.VECTOR_SEARCH_DEGRADED, "no query embedding", {"index_id": plan.index_id}
            )

        rows = [
            row
            for row in self._indexes.get(plan.index_id, {}).values()
            if matches_filters(row.fields, plan.filters)
            and (not plan.languages or row.language in plan.languages)
        ]

        if plan.is_browse:
            scored = [self._scored(row, 1.0, 1.0, None) for row in rows]
            scored.sort(key=lambda s: s.item_id)
        else:
            terms = set(tokenize(plan.query))
            scored = []
            for row in rows:
                scored_row = self._score_row(plan, terms, row)
                if scored_row is not None:
                    scored.append(scored_row)
            scored.sort(key=lambda s: (-s.score, s.item_id))

        return scored[plan.offset : plan.offset + plan.limit], len(scored)

    def _score_row(self, plan: SearchPlan, terms: set[str], row: IndexRow) -> ScoredItem | None:
        similarity = None
        if plan.mode is not SearchMode.TEXT_ONLY and row.embedding is not None:
            similarity = cosine_similarity(plan.query_embedding, row.embedding)

        if plan.mode is SearchMode.TEXT_ONLY:
            rank = text_rank(terms, row.search_text)
            return None if rank is None else self._scored(row, rank, rank, None)

        if plan.mode is SearchMode.VECTOR_ONLY:
            if similarity is None or similarity < plan.similarity_threshold:
                return None
            return self._scored(row, similarity, None, similarity)

        rank = text_rank(terms, row.search_text)
        if rank is None and (similarity is None or similarity < plan.similarity_threshold):
            return None
        score = fuse_scores(rank, similarity, plan.text_weight, plan.vector_weight)
        return self._scored(row, score, rank, similarity)

    @staticmethod
    def _scored(row: IndexRow, score: float, rank: float | None, similarity: float | None) -> ScoredItem:
        return ScoredItem(
            item_id=row.item_id,
            score=score,
            text_rank=rank,
            vector_similarity=similarity,
            fields=dict(row.fields),
            language=row.language,
            datasource=row.datasource,
        )
