"""
Tests for hybrid query planning and SQL rendering.
"""

import pytest

from hybrid_search.circuit_breaker import CircuitBreaker
from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.entities import HybridSearchRequest, SearchMode
from hybrid_search.services import EmbeddingService, HybridQueryBuilder
from hybrid_search.services.query_builder import validate_identifier, vector_literal


@pytest.fixture
def builder(embedding_service):
    return HybridQueryBuilder(
        embedding_service,
        text_weight=0.7,
        vector_weight=0.3,
        similarity_threshold=0.1,
        default_mode="hybrid",
        fts_configuration="english",
    )


class TestPlan:
    def test_defaults_filled_from_builder(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural networks"))
        assert plan.mode is SearchMode.HYBRID
        assert plan.requested_mode is SearchMode.HYBRID
        assert (plan.text_weight, plan.vector_weight, plan.similarity_threshold) == (0.7, 0.3, 0.1)
        assert plan.query_embedding is not None
        assert plan.degradation is None

    def test_request_overrides(self, builder):
        plan = builder.plan(
            HybridSearchRequest(
                "articles",
                "neural networks",
                text_weight=0.2,
                vector_weight=0.8,
                similarity_threshold=0.5,
                mode=SearchMode.VECTOR_ONLY,
            )
        )
        assert plan.mode is SearchMode.VECTOR_ONLY
        assert (plan.text_weight, plan.vector_weight, plan.similarity_threshold) == (0.2, 0.8, 0.5)

    def test_empty_query_is_a_text_browse(self, builder, provider):
        plan = builder.plan(HybridSearchRequest("articles", "   ", mode=SearchMode.VECTOR_ONLY))
        assert plan.is_browse
        assert plan.mode is SearchMode.TEXT_ONLY
        assert plan.requested_mode is SearchMode.TEXT_ONLY
        assert provider.calls == []

    def test_text_only_never_embeds(self, builder, provider):
        plan = builder.plan(HybridSearchRequest("articles", "neural", mode=SearchMode.TEXT_ONLY))
        assert plan.query_embedding is None
        assert provider.calls == []

    @pytest.mark.parametrize(
        "error",
        [
            RuntimeError("model crashed"),
            ConnectionRefusedError("Connection refused"),
            DegradationEvent.create(DegradationKind.RATE_LIMITED, "openai", {"retry_after": 1}),
            ValueError("bad vector"),
        ],
    )
    def test_embedding_failure_falls_back_to_text(self, builder, provider, error):
        provider.fail_all = error

        plan = builder.plan(HybridSearchRequest("articles", "neural networks"))

        assert plan.mode is SearchMode.TEXT_ONLY
        assert plan.requested_mode is SearchMode.HYBRID
        assert plan.degraded
        assert plan.query_embedding is None
        assert plan.degradation is not None
        assert plan.degradation.user_message

    def test_query_embedding_does_not_wait_out_rate_limits(self, provider, clock):
        sleeps = []
        service = EmbeddingService(
            provider=provider,
            circuit_breaker=CircuitBreaker("fake", failure_threshold=100, clock=clock),
            max_retries=3,
            sleep=sleeps.append,
        )
        builder = HybridQueryBuilder(service, fts_configuration="english", default_mode="hybrid")
        provider.fail_all = DegradationEvent.create(DegradationKind.RATE_LIMITED, "openai", {"retry_after": 60})

        plan = builder.plan(HybridSearchRequest("articles", "neural networks"))

        assert plan.mode is SearchMode.TEXT_ONLY
        assert plan.degradation.kind is DegradationKind.RATE_LIMITED
        assert sleeps == []
        assert len(provider.calls) == 1

    def test_open_circuit_falls_back_without_calling_provider(self, builder, provider, embedding_service):
        for _ in range(3):
            embedding_service.circuit_breaker.record_failure()

        plan = builder.plan(HybridSearchRequest("articles", "neural networks", mode=SearchMode.VECTOR_ONLY))

        assert plan.mode is SearchMode.TEXT_ONLY
        assert plan.degradation.kind is DegradationKind.CIRCUIT_OPEN
        assert provider.calls == []

    def test_no_embedding_service(self):
        builder = HybridQueryBuilder(None, fts_configuration="english", default_mode="hybrid")
        plan = builder.plan(HybridSearchRequest("articles", "neural"))
        assert plan.mode is SearchMode.TEXT_ONLY
        assert plan.degradation.kind is DegradationKind.VECTOR_SEARCH_DEGRADED

    @pytest.mark.parametrize(
        "overrides",
        [
            {"text_weight": -0.1},
            {"vector_weight": -1.0},
            {"similarity_threshold": 1.5},
            {"similarity_threshold": -0.1},
            {"limit": -1},
            {"offset": -5},
        ],
    )
    def test_invalid_parameters(self, builder, overrides):
        with pytest.raises(ValueError):
            builder.plan(HybridSearchRequest("articles", "neural", **overrides))


class TestBuildSql:
    def test_hybrid_query(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural networks", limit=5, offset=10))

        sql, params = builder.build_sql(plan, "search_index_articles")

        assert "FROM search_index_articles" in sql
        assert "ORDER BY fused_score DESC, item_id ASC LIMIT :limit OFFSET :offset" in sql
        assert "COALESCE(:text_weight * text_rank, 0) + COALESCE(:vector_weight * vector_similarity, 0)" in sql
        assert "WHERE text_rank IS NOT NULL OR vector_similarity >= :threshold" in sql
        assert "<=> CAST(:query_embedding AS vector)" in sql
        assert params["query"] == "neural networks"
        assert params["fts_config"] == "english"
        assert params["text_weight"] == 0.7
        assert params["vector_weight"] == 0.3
        assert params["threshold"] == 0.1
        assert params["limit"] == 5
        assert params["offset"] == 10
        assert params["query_embedding"].startswith("[")

    def test_text_only_query(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural", mode=SearchMode.TEXT_ONLY))
        sql, params = builder.build_sql(plan, "search_index_articles")
        assert "search_vector @@ plainto_tsquery" in sql
        assert "content_embedding" not in sql
        assert "query_embedding" not in params

    def test_vector_only_query(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural", mode=SearchMode.VECTOR_ONLY))
        sql, _ = builder.build_sql(plan, "search_index_articles")
        assert "content_embedding IS NOT NULL" in sql
        assert ">= :threshold" in sql
        assert "ts_rank" not in sql

    def test_browse_query(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", ""))
        sql, params = builder.build_sql(plan, "search_index_articles")
        assert "ORDER BY item_id ASC" in sql
        assert "fused_score DESC" not in sql
        assert "query" not in params

    def test_filters_and_languages(self, builder):
        plan = builder.plan(
            HybridSearchRequest(
                "articles",
                "neural",
                filters={"type": ["article", "page"], "status": True},
                languages=("en", "de"),
                mode=SearchMode.TEXT_ONLY,
            )
        )

        sql, params = builder.build_sql(plan, "search_index_articles")

        assert params["filter_0_name"] == "status"
        assert params["filter_0_values"] == ["true"]
        assert params["filter_1_name"] == "type"
        assert params["filter_1_values"] == ["article", "page"]
        assert params["languages"] == ["en", "de"]
        assert "language = ANY(:languages)" in sql
        assert "?| CAST(:filter_1_values AS text[])" in sql

    def test_count_query(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural"))
        sql, params = builder.build_count_sql(plan, "search_index_articles")
        assert sql.startswith("SELECT COUNT(*) FROM (")
        assert "limit" not in params

    def test_unsafe_table_name(self, builder):
        plan = builder.plan(HybridSearchRequest("articles", "neural"))
        with pytest.raises(ValueError):
            builder.build_sql(plan, "articles; DROP TABLE users")


def test_unsafe_fts_configuration(embedding_service):
    with pytest.raises(ValueError):
        HybridQueryBuilder(embedding_service, fts_configuration="english'")


@pytest.mark.parametrize("name", ["search_index_articles", "_x", "A1"])
def test_valid_identifiers(name):
    assert validate_identifier(name) == name


@pytest.mark.parametrize("name", ["", "1abc", "a-b", "a b", "x" * 64])
def test_invalid_identifiers(name):
    with pytest.raises(ValueError):
        validate_identifier(name)


def test_vector_literal():
    assert vector_literal([0.5, 1, -2.25]) == "[0.5,1.0,-2.25]"
