#!/usr/bin/env python3
"""
Demo script for hybrid search.

This script indexes a handful of articles into in-process stores and runs
text-only, vector-only and hybrid searches over them with a local
sentence-transformers model. It then breaks the embedding provider to show
the full-text fallback.
"""

import time

from hybrid_search.entities import HybridSearchRequest, IndexField, IndexItem, SearchMode
from hybrid_search.repositories import MemoryEmbeddingCache, MemoryJobStore, MemorySearchStore
from hybrid_search.repositories.local_embedding_provider import LocalEmbeddingProvider
from hybrid_search.services import (
    EmbeddingCacheManager,
    EmbeddingQueueManager,
    EmbeddingService,
    EmbeddingWorker,
    HybridQueryBuilder,
    HybridSearchService,
    IndexWriter,
)

ARTICLES = [
    ("node/1", "Machine learning basics", "Machine learning lets computers learn patterns from data."),
    ("node/2", "Neural networks", "Deep neural networks stack layers of artificial neurons."),
    ("node/3", "Gardening in spring", "Plant tomatoes after the last frost and water them daily."),
    ("node/4", "Cooking pasta", "Boil pasta in salted water until it is al dente."),
    ("node/5", "Training models", "Gradient descent adjusts model weights to reduce the loss."),
]


def print_section(title: str) -> None:
    """Print a section header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def print_result(request: HybridSearchRequest, service: HybridSearchService) -> None:
    start_time = time.time()
    result = service.search(request)
    elapsed_ms = (time.time() - start_time) * 1000
    label = result.mode.value if not result.degraded else f"{result.mode.value} (fallback)"
    print(f"\n  Query: {request.query!r} [{label}] {result.total} hits in {elapsed_ms:.1f}ms")
    for item in result.items:
        similarity = f"{item.vector_similarity:.3f}" if item.vector_similarity is not None else "-"
        rank = f"{item.text_rank:.3f}" if item.text_rank is not None else "-"
        print(f"    {item.item_id:8} score={item.score:.3f} text={rank} vector={similarity}  {item.fields['title']}")
    for message in result.messages:
        print(f"  ⚠️  {message}")


def main() -> None:
    print_section("Setup")
    provider = LocalEmbeddingProvider.create()
    cache_manager = EmbeddingCacheManager(MemoryEmbeddingCache(), enabled=True)
    embeddings = EmbeddingService.create(provider=provider, cache_manager=cache_manager)
    store = MemorySearchStore()
    queue = EmbeddingQueueManager(MemoryJobStore(), handlers=EmbeddingWorker(embeddings, store).handlers())
    queue.set_enabled(True)
    writer = IndexWriter(store, embeddings, queue, server_id="demo")
    builder = HybridQueryBuilder.create(embeddings)
    search = HybridSearchService(builder, store)
    print(f"  ✓ Model: {provider.model_name} ({provider.dimension} dimensions)")

    print_section("Indexing (embeddings deferred to the queue)")
    writer.ensure_index("articles")
    items = [
        IndexItem(item_id, fields=(IndexField("title", title), IndexField("body", body)))
        for item_id, title, body in ARTICLES
    ]
    report = writer.index_items("articles", items)
    print(f"  ✓ Indexed {len(report.indexed)} items, {len(report.queued)} embeddings queued")
    stats = queue.process_until_empty()
    print(f"  ✓ Queue drained: {stats['processed']} jobs in {stats['rounds']} rounds")

    print_section("Searching")
    for mode in SearchMode:
        print_result(HybridSearchRequest("articles", "learning from data", mode=mode, limit=3), search)
    print_result(HybridSearchRequest("articles", "how do computers get smarter", limit=3), search)

    print_section("Embedding cache")
    embeddings.embed("Machine learning is great")
    embeddings.embed("Machine   learning is great")
    cache_stats = cache_manager.get_statistics()
    print(f"  ✓ Requests: {cache_stats['total_requests']}, hit rate: {cache_stats['hit_percentage']}%")

    print_section("Provider outage")
    for _ in range(embeddings.circuit_breaker.get_stats()["failure_threshold"]):
        embeddings.circuit_breaker.record_failure()
    print_result(HybridSearchRequest("articles", "neural networks", limit=3), search)


if __name__ == "__main__":
    main()
