"""Degradation taxonomy.

Every recoverable failure in the search core is reported as a single
``DegradationEvent`` exception tagged with a ``DegradationKind``. The kind
decides severity, retryability, fallback strategy, the user-facing message
and whether the event is worth logging.

Usage:
    ```python
    from hybrid_search.degradation import DegradationEvent, DegradationKind

    try:
        vector = provider.encode(text)
    except httpx.HTTPError as exc:
        raise classify_exception(exc, {"service": "openai"}) from exc

    # Or build one explicitly
    raise DegradationEvent.create(DegradationKind.QUEUE_DEGRADED, "enqueue generate_single")
    ```
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any


class DegradationKind(str, Enum):
    """Kinds of recoverable failure."""

    EMBEDDING_SERVICE_UNAVAILABLE = "embedding_service_unavailable"
    DATABASE_UNAVAILABLE = "database_unavailable"
    TEMPORARY_API = "temporary_api"
    RATE_LIMITED = "rate_limited"
    VECTOR_SEARCH_DEGRADED = "vector_search_degraded"
    QUEUE_DEGRADED = "queue_degraded"
    CACHE_DEGRADED = "cache_degraded"
    PARTIAL_BATCH_FAILURE = "partial_batch_failure"
    CIRCUIT_OPEN = "circuit_open"
    MEMORY_EXHAUSTED = "memory_exhausted"
    CONFIGURATION_DEGRADED = "configuration_degraded"
    SERVICE_UNAVAILABLE = "service_unavailable"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    NOTICE = "notice"


class FallbackStrategy(str, Enum):
    """What the caller should do instead of the failed operation."""

    TEXT_SEARCH_ONLY = "text_search_only"
    CACHE_FALLBACK_OR_MAINTENANCE = "cache_fallback_or_maintenance_mode"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RATE_LIMIT_BACKOFF = "rate_limit_backoff"
    TEXT_SEARCH_FALLBACK = "text_search_fallback"
    SYNCHRONOUS_PROCESSING = "synchronous_processing"
    DIRECT_PROCESSING = "direct_processing"
    CONTINUE_WITH_PARTIAL_RESULTS = "continue_with_partial_results"
    CIRCUIT_BREAKER_FALLBACK = "circuit_breaker_fallback"
    BATCH_SIZE_REDUCTION = "batch_size_reduction"
    BASIC_FUNCTIONALITY_ONLY = "basic_functionality_only"
    GRACEFUL_DEGRADATION = "graceful_degradation"


@dataclass(frozen=True)
class _Profile:
    severity: Severity
    retryable: bool
    fallback: FallbackStrategy
    user_message: str
    technical_template: str
    default_detail: str
    should_log: bool = True


_PROFILES: dict[DegradationKind, _Profile] = {
    DegradationKind.EMBEDDING_SERVICE_UNAVAILABLE: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.TEXT_SEARCH_ONLY,
        "AI-powered search is temporarily unavailable. Using traditional search instead.",
        "Embedding service '{detail}' is currently unavailable",
        "Embedding service",
    ),
    DegradationKind.DATABASE_UNAVAILABLE: _Profile(
        Severity.CRITICAL,
        True,
        FallbackStrategy.CACHE_FALLBACK_OR_MAINTENANCE,
        "Database is temporarily unavailable. Please try again later.",
        "Database connection failed: {detail}",
        "connection refused",
    ),
    DegradationKind.TEMPORARY_API: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.RETRY_WITH_BACKOFF,
        "Search service is experiencing high load. Some features may be limited.",
        "Temporary API failure: {detail}",
        "server error",
    ),
    DegradationKind.RATE_LIMITED: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.RATE_LIMIT_BACKOFF,
        "Search service is busy. Results may be limited temporarily.",
        "Rate limited by {detail}",
        "API service",
    ),
    DegradationKind.VECTOR_SEARCH_DEGRADED: _Profile(
        Severity.NOTICE,
        False,
        FallbackStrategy.TEXT_SEARCH_FALLBACK,
        "Using traditional text search. Some semantic matching may be limited.",
        "Vector search degraded: {detail}",
        "Vector search unavailable",
        should_log=False,
    ),
    DegradationKind.QUEUE_DEGRADED: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.SYNCHRONOUS_PROCESSING,
        "Background processing is delayed. Search results are still available "
        "but may not include the latest content updates.",
        "Queue operation degraded: {detail}",
        "background processing",
    ),
    DegradationKind.CACHE_DEGRADED: _Profile(
        Severity.NOTICE,
        False,
        FallbackStrategy.DIRECT_PROCESSING,
        "Search performance may be slower due to caching issues.",
        "Cache degraded: {detail}",
        "embedding cache",
        should_log=False,
    ),
    DegradationKind.PARTIAL_BATCH_FAILURE: _Profile(
        Severity.WARNING,
        False,
        FallbackStrategy.CONTINUE_WITH_PARTIAL_RESULTS,
        "Some content may not be fully searchable due to processing issues. "
        "Search functionality remains available.",
        "Partial failure in {detail}",
        "batch operation",
    ),
    DegradationKind.CIRCUIT_OPEN: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.CIRCUIT_BREAKER_FALLBACK,
        "Search service is temporarily disabled due to recurring issues.",
        "Circuit breaker open for {detail}",
        "service",
    ),
    DegradationKind.MEMORY_EXHAUSTED: _Profile(
        Severity.CRITICAL,
        True,
        FallbackStrategy.BATCH_SIZE_REDUCTION,
        "Search is processing in smaller batches due to high demand.",
        "Memory exhausted: {detail}",
        "memory limit reached",
    ),
    DegradationKind.CONFIGURATION_DEGRADED: _Profile(
        Severity.WARNING,
        False,
        FallbackStrategy.BASIC_FUNCTIONALITY_ONLY,
        "Some advanced search features are unavailable due to configuration. "
        "Basic search remains functional.",
        "Configuration issue: {detail}",
        "invalid configuration",
    ),
    DegradationKind.SERVICE_UNAVAILABLE: _Profile(
        Severity.WARNING,
        True,
        FallbackStrategy.GRACEFUL_DEGRADATION,
        "Search is running with reduced functionality.",
        "Service unavailable: {detail}",
        "unknown error",
    ),
}

DEFAULT_RETRY_AFTER = 60

_LOG_LEVELS = {
    Severity.CRITICAL: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.NOTICE: logging.INFO,
}


class DegradationEvent(Exception):
    """A recoverable failure with a fallback the caller can apply.

    Attributes:
        kind: Which kind of degradation occurred
        severity: critical, warning or notice
        retryable: Whether retrying the same operation may succeed
        fallback_strategy: What the caller should do instead
        user_message: Safe to show to end users
        technical_message: For logs only
        should_log: False for expected, non-actionable degradations
        context: Kind-specific details (retry_after, item sets, service, ...)
    """

    def __init__(
        self,
        kind: DegradationKind,
        technical_message: str,
        *,
        severity: Severity,
        retryable: bool,
        fallback_strategy: FallbackStrategy,
        user_message: str,
        should_log: bool = True,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(technical_message)
        self.kind = kind
        self.technical_message = technical_message
        self.severity = severity
        self.retryable = retryable
        self.fallback_strategy = fallback_strategy
        self.user_message = user_message
        self.should_log = should_log
        self.context: dict[str, Any] = dict(context or {})

    @classmethod
    def create(
        cls,
        kind: DegradationKind,
        detail: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "DegradationEvent":
        """Build an event from the profile registered for ``kind``.

        Args:
            kind: The degradation kind
            detail: Interpolated into the technical message. Defaults per kind.
            context: Optional kind-specific details

        Returns:
            The configured DegradationEvent

        Example:
            ```python
            event = DegradationEvent.create(
                DegradationKind.RATE_LIMITED,
                "openai",
                {"retry_after": 30},
            )
            event.fallback_strategy  # FallbackStrategy.RATE_LIMIT_BACKOFF
            ```
        """
        profile = _PROFILES[kind]
        context = dict(context or {})
        if kind is DegradationKind.RATE_LIMITED:
            context.setdefault("retry_after", DEFAULT_RETRY_AFTER)
        technical = profile.technical_template.format(detail=detail or profile.default_detail)
        if kind is DegradationKind.RATE_LIMITED:
            technical += f", retry after {context['retry_after']} seconds"
        return cls(
            kind,
            technical,
            severity=profile.severity,
            retryable=profile.retryable,
            fallback_strategy=profile.fallback,
            user_message=profile.user_message,
            should_log=profile.should_log,
            context=context,
        )

    @property
    def retry_after(self) -> float | None:
        value = self.context.get("retry_after")
        return float(value) if value is not None else None

    @property
    def successful_items(self) -> list[Any]:
        return list(self.context.get("successful_items", []))

    @property
    def failed_items(self) -> list[Any]:
        return list(self.context.get("failed_items", []))

    @property
    def success_rate(self) -> float | None:
        return self.context.get("success_rate")

    def to_dict(self) -> dict[str, Any]:
        """Serialise the user-safe parts of the event."""
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "fallback_strategy": self.fallback_strategy.value,
            "message": self.user_message,
        }


def _status_code(exc: BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def _retry_after_from(exc: BaseException, context: dict[str, Any]) -> float:
    if context.get("retry_after") is not None:
        return float(context["retry_after"])
    value = getattr(exc, "retry_after", None)
    if value is None:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            value = headers.get("retry-after")
    try:
        return float(value) if value is not None else DEFAULT_RETRY_AFTER
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


def classify_exception(exc: BaseException, context: dict[str, Any] | None = None) -> DegradationEvent:
    """Map a raw low-level error onto a degradation kind.

    Checks are applied in order: connection refused, rate limit (HTTP 429 or
    "rate limit" in the message), HTTP 5xx, vector/embedding, queue, cache,
    and finally a generic service-unavailable event.

    Args:
        exc: The caught exception
        context: Extra context merged into the event (service, operation, ...)

    Returns:
        A DegradationEvent. Events passed in are returned unchanged.
    """
    if isinstance(exc, DegradationEvent):
        return exc

    context = dict(context or {})
    message = str(exc)
    lowered = message.lower()
    code = _status_code(exc)
    context.setdefault("original_error", type(exc).__name__)

    if isinstance(exc, ConnectionRefusedError) or "connection refused" in lowered:
        return DegradationEvent.create(DegradationKind.DATABASE_UNAVAILABLE, message, context)

    if code == 429 or "rate limit" in lowered:
        context["retry_after"] = _retry_after_from(exc, context)
        return DegradationEvent.create(
            DegradationKind.RATE_LIMITED, context.get("service", "API service"), context
        )

    if code is not None and 500 <= code < 600:
        context["status_code"] = code
        return DegradationEvent.create(DegradationKind.TEMPORARY_API, message, context)

    if "vector" in lowered or "embedding" in lowered:
        return DegradationEvent.create(DegradationKind.VECTOR_SEARCH_DEGRADED, message, context)

    if "queue" in lowered:
        return DegradationEvent.create(DegradationKind.QUEUE_DEGRADED, message, context)

    if "cache" in lowered:
        return DegradationEvent.create(DegradationKind.CACHE_DEGRADED, message, context)

    return DegradationEvent.create(DegradationKind.SERVICE_UNAVAILABLE, message, context)


def partial_batch_failure(
    successful: list[Any],
    failed: list[Any],
    operation: str = "batch operation",
) -> DegradationEvent:
    """Build a partial-batch-failure event.

    The event is only escalated to logging when more than half of the batch
    failed.

    Args:
        successful: Items that were processed
        failed: Items that were not
        operation: Label used in the technical message

    Returns:
        DegradationEvent of kind PARTIAL_BATCH_FAILURE
    """
    total = len(successful) + len(failed)
    success_rate = (len(successful) / total) * 100 if total else 0.0
    event = DegradationEvent.create(
        DegradationKind.PARTIAL_BATCH_FAILURE,
        f"{operation}: {len(successful)}/{total} items succeeded",
        {
            "successful_items": list(successful),
            "failed_items": list(failed),
            "success_rate": success_rate,
            "operation": operation,
        },
    )
    event.should_log = total > 0 and len(failed) / total > 0.5
    return event


def log_degradation(logger: logging.Logger, event: DegradationEvent) -> None:
    """Log the technical message of an event when it is log-worthy."""
    if not event.should_log:
        return
    logger.log(
        _LOG_LEVELS[event.severity],
        "%s [%s, fallback=%s]",
        event.technical_message,
        event.kind.value,
        event.fallback_strategy.value,
    )
