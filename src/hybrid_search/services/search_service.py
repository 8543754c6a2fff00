"""Search execution with text-only fallback."""

import logging

from hybrid_search.degradation import DegradationEvent, DegradationKind, log_degradation
from hybrid_search.entities import HybridSearchRequest, SearchMode, SearchResult
from hybrid_search.protocols import SearchStore
from hybrid_search.services.query_builder import HybridQueryBuilder

logger = logging.getLogger(__name__)


class HybridSearchService:
    """Plans and executes hybrid searches.

    If the store reports that the vector part of a plan cannot run, the
    same request is retried as full-text search and the result carries the
    user-facing explanation.

    Example:
        ```python
        service = HybridSearchService(builder, search_store)
        result = service.search(HybridSearchRequest(index_id="articles", query="neural networks"))
        for item in result.items:
            print(item.item_id, item.score)
        ```
    """

    def __init__(self, query_builder: HybridQueryBuilder, search_store: SearchStore) -> None:
        self._builder = query_builder
        self._store = search_store

    def search(self, request: HybridSearchRequest) -> SearchResult:
        """Run a search.

        Raises:
            ValueError: For invalid request parameters
            DegradationEvent: When even full-text search cannot run
        """
        plan = self._builder.plan(request)
        try:
            items, total = self._store.search(plan)
        except DegradationEvent as e:
            if plan.mode is SearchMode.TEXT_ONLY or e.kind is not DegradationKind.VECTOR_SEARCH_DEGRADED:
                log_degradation(logger, e)
                raise
            plan = self._builder.as_text_only(plan, e)
            items, total = self._store.search(plan)

        messages = (plan.degradation.user_message,) if plan.degradation is not None else ()
        return SearchResult(
            items=items,
            total=total,
            mode=plan.mode,
            requested_mode=plan.requested_mode,
            messages=messages,
        )
