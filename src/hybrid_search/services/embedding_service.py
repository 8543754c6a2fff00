"""Cached, resilient embedding generation.

Wraps an EmbeddingProvider with:
1. Text preprocessing (normalisation, truncation to the model's budget)
2. Cache-first lookup keyed on the text and provider metadata
3. Retry with exponential backoff for retryable failures
4. A circuit breaker that stops calling a provider that keeps failing

Every failure leaves this service as a DegradationEvent.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from hybrid_search.circuit_breaker import CircuitBreaker
from hybrid_search.config import settings
from hybrid_search.degradation import (
    DegradationEvent,
    DegradationKind,
    classify_exception,
    log_degradation,
)
from hybrid_search.protocols import EmbeddingProvider
from hybrid_search.services.cache_manager import EmbeddingCacheManager
from hybrid_search.utils import normalize_text, truncate_text, vector_problem

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Kinds that keep their own identity; anything else from a provider call
# means the embedding service is unavailable.
_PROVIDER_KINDS = {
    DegradationKind.RATE_LIMITED,
    DegradationKind.TEMPORARY_API,
    DegradationKind.CIRCUIT_OPEN,
    DegradationKind.MEMORY_EXHAUSTED,
    DegradationKind.EMBEDDING_SERVICE_UNAVAILABLE,
}


class EmbeddingService:
    """Generate embeddings through cache, retries and a circuit breaker.

    Example:
        ```python
        service = EmbeddingService.create(
            provider=OpenAIEmbeddingProvider.create(),
            cache_manager=EmbeddingCacheManager(MemoryEmbeddingCache()),
        )
        vector = service.embed("Machine learning is great")
        ```
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache_manager: EmbeddingCacheManager | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        max_retry_delay: float = 60.0,
        query_max_retries: int | None = None,
        max_chars: int | None = None,
        service_name: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the embedding service.

        Args:
            provider: Embedding provider (required).
            cache_manager: Cache facade. None disables caching.
            circuit_breaker: Breaker guarding provider calls. Defaults to one
                configured from settings.
            max_retries: Retries after the first attempt. Defaults to settings.
            retry_delay: Base delay for exponential backoff. Defaults to settings.
            max_retry_delay: Upper bound for any single wait.
            query_max_retries: Retries for search-time query embeddings.
                Defaults to settings (none, so a failing provider falls back
                to text search immediately).
            max_chars: Truncation budget. Defaults to the provider's
                ``max_input_chars`` when it has one.
            service_name: Label for logs and events. Defaults to settings.
            sleep: Called with the backoff delay in seconds.
        """
        cfg = settings.embedding
        self._provider = provider
        self._cache = cache_manager
        self._service_name = service_name or cfg.provider
        self._breaker = circuit_breaker or CircuitBreaker(
            self._service_name,
            failure_threshold=cfg.circuit_failure_threshold,
            recovery_timeout=cfg.circuit_recovery_timeout,
            success_threshold=cfg.circuit_success_threshold,
        )
        self._max_retries = cfg.max_retries if max_retries is None else max_retries
        self._retry_delay = cfg.retry_delay if retry_delay is None else retry_delay
        self._max_retry_delay = max_retry_delay
        self._query_max_retries = cfg.query_max_retries if query_max_retries is None else query_max_retries
        self._max_chars = max_chars or getattr(provider, "max_input_chars", 8192 * 3)
        self._sleep = sleep
        self._stats = {"generated": 0, "cache_hits": 0, "failures": 0}

    @classmethod
    def create(
        cls,
        provider: EmbeddingProvider,
        cache_manager: EmbeddingCacheManager | None = None,
        **kwargs: Any,
    ) -> "EmbeddingService":
        """Factory method to create EmbeddingService with settings defaults."""
        return cls(provider=provider, cache_manager=cache_manager, **kwargs)

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    @property
    def metadata(self) -> dict[str, Any]:
        """Cache key metadata: a model switch never serves stale vectors."""
        return {
            "service": self._service_name,
            "model": self._provider.model_name,
            "dimension": self._provider.dimension,
        }

    def preprocess(self, text: str) -> str:
        """Normalise and truncate text before it is embedded.

        Raises:
            ValueError: If nothing is left to embed
        """
        cleaned = truncate_text(normalize_text(text or ""), self._max_chars)
        if not cleaned:
            raise ValueError("Cannot embed empty text")
        return cleaned

    def get_cached(self, text: str) -> list[float] | None:
        """Cache lookup only; never calls the provider."""
        if self._cache is None:
            return None
        return self._cache.get_cached_embedding(self.preprocess(text), self.metadata)

    def embed(self, text: str) -> list[float]:
        """Embed one text, from cache when possible.

        Raises:
            ValueError: If the text is empty
            DegradationEvent: If the provider could not produce a vector
        """
        return self._embed(text, self._max_retries)

    def embed_query(self, text: str) -> list[float]:
        """Embed a search query synchronously. Queries are never queued.

        Uses the query retry allowance so a struggling provider cannot hold
        a search request in backoff.
        """
        return self._embed(text, self._query_max_retries)

    def _embed(self, text: str, max_retries: int) -> list[float]:
        cleaned = self.preprocess(text)
        if self._cache is not None:
            cached = self._cache.get_cached_embedding(cleaned, self.metadata)
            if cached is not None:
                self._stats["cache_hits"] += 1
                return cached

        vector = self._call(lambda: self._provider.encode(cleaned), max_retries)
        self._check_vector(vector)
        self._stats["generated"] += 1
        if self._cache is not None:
            self._cache.cache_embedding(cleaned, vector, self.metadata)
        return vector

    def embed_batch(self, texts: list[str]) -> tuple[dict[int, list[float]], dict[int, Exception]]:
        """Embed several texts, isolating failures per text.

        Cached texts are served from the cache; the rest go to the provider
        in one batch call. If the batch call fails for a reason other than
        an open circuit, each text is retried on its own.

        Returns:
            (vectors, failures), both keyed by position in ``texts``
        """
        vectors: dict[int, list[float]] = {}
        failures: dict[int, Exception] = {}
        cleaned: dict[int, str] = {}
        for i, text in enumerate(texts):
            try:
                cleaned[i] = self.preprocess(text)
            except ValueError as e:
                failures[i] = e

        if self._cache is not None and cleaned:
            positions = list(cleaned)
            hits = self._cache.get_cached_embeddings_batch([cleaned[i] for i in positions], self.metadata)
            for local, vector in hits.items():
                vectors[positions[local]] = vector
            self._stats["cache_hits"] += len(hits)

        missing = [i for i in cleaned if i not in vectors]
        if not missing:
            return vectors, failures

        try:
            generated = self._call(
                lambda: self._provider.encode_batch([cleaned[i] for i in missing]), self._max_retries
            )
            if len(generated) != len(missing):
                raise ValueError(f"Provider returned {len(generated)} vectors for {len(missing)} texts")
            for vector in generated:
                self._check_vector(vector)
        except DegradationEvent as e:
            if e.kind is DegradationKind.CIRCUIT_OPEN:
                failures.update({i: e for i in missing})
                return vectors, failures
            generated = None
        except ValueError:
            generated = None

        if generated is None:
            for i in missing:
                try:
                    vectors[i] = self.embed(cleaned[i])
                except (DegradationEvent, ValueError) as e:
                    failures[i] = e
            return vectors, failures

        self._stats["generated"] += len(generated)
        for i, vector in zip(missing, generated):
            vectors[i] = vector
        if self._cache is not None:
            self._cache.cache_embeddings_batch([cleaned[i] for i in missing], generated, self.metadata)
        return vectors, failures

    def is_available(self) -> bool:
        return self._breaker.allow_request() and self._provider.is_available()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "service": self._service_name,
            "model": self._provider.model_name,
            "circuit": self._breaker.get_stats(),
        }

    def _call(self, operation: Callable[[], T], max_retries: int) -> T:
        """Run a provider call with retries, backoff and the circuit breaker."""
        attempt = 0
        while True:
            try:
                return self._breaker.call(operation)
            except Exception as e:
                event = self._to_event(e)
                if (
                    event.kind is DegradationKind.CIRCUIT_OPEN
                    or not event.retryable
                    or attempt >= max_retries
                ):
                    self._stats["failures"] += 1
                    log_degradation(logger, event)
                    if event is e:
                        raise
                    raise event from e

                delay = self._retry_delay * (2**attempt)
                if event.kind is DegradationKind.RATE_LIMITED and event.retry_after is not None:
                    delay = event.retry_after
                delay = min(delay, self._max_retry_delay)
                logger.info(
                    "Embedding call failed (%s), retry %d/%d in %.1fs",
                    event.kind.value,
                    attempt + 1,
                    max_retries,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    def _to_event(self, error: Exception) -> DegradationEvent:
        event = classify_exception(error, {"service": self._service_name})
        if event.kind in _PROVIDER_KINDS:
            return event
        return DegradationEvent.create(
            DegradationKind.EMBEDDING_SERVICE_UNAVAILABLE,
            self._service_name,
            {**event.context, "service": self._service_name, "error": str(error)},
        )

    @staticmethod
    def _check_vector(vector: list[float]) -> None:
        problem = vector_problem(vector)
        if problem:
            raise ValueError(f"Provider returned an unusable vector: {problem}")
