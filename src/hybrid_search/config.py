import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache

import redis
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _parse_server_overrides(raw: str) -> dict[str, bool]:
    """Parse ``server_a=true,server_b=false`` into a mapping."""
    overrides: dict[str, bool] = {}
    for part in raw.split(","):
        part = part.strip()
        if not part or "=" not in part:
            continue
        server_id, value = part.split("=", 1)
        overrides[server_id.strip()] = value.strip().lower() in ("1", "true", "yes", "on")
    return overrides


@dataclass(frozen=True)
class CacheSettings:
    """Embedding cache settings."""

    enabled: bool = _env_bool("EMBEDDING_CACHE_ENABLED", "true")
    backend: str = os.getenv("EMBEDDING_CACHE_BACKEND", "database")  # "database" or "memory"
    ttl: int = int(os.getenv("EMBEDDING_CACHE_TTL", str(86400 * 30)))  # 30 days default
    max_entries: int = int(os.getenv("EMBEDDING_CACHE_MAX_ENTRIES", "100000"))
    cleanup_probability: float = float(os.getenv("EMBEDDING_CACHE_CLEANUP_PROBABILITY", "0.01"))
    compression: bool = _env_bool("EMBEDDING_CACHE_COMPRESSION", "true")
    table_name: str = os.getenv("EMBEDDING_CACHE_TABLE", "embedding_cache")

    def __post_init__(self) -> None:
        if self.backend not in ("database", "memory"):
            raise ValueError(f"EMBEDDING_CACHE_BACKEND must be 'database' or 'memory', got {self.backend}")
        if not 0 <= self.cleanup_probability <= 1:
            raise ValueError("EMBEDDING_CACHE_CLEANUP_PROBABILITY must be between 0 and 1")
        if self.max_entries < 1:
            raise ValueError("EMBEDDING_CACHE_MAX_ENTRIES must be positive")


@dataclass(frozen=True)
class QueueSettings:
    """Embedding queue settings.

    Priority levels are numeric bands: lower values are claimed first.
    """

    enabled: bool = _env_bool("EMBEDDING_QUEUE_ENABLED", "false")
    default_enabled: bool = _env_bool("EMBEDDING_QUEUE_DEFAULT_ENABLED", "true")
    servers: dict[str, bool] = field(
        default_factory=lambda: _parse_server_overrides(os.getenv("EMBEDDING_QUEUE_SERVERS", ""))
    )
    batch_size: int = int(os.getenv("EMBEDDING_QUEUE_BATCH_SIZE", "10"))
    max_processing_time: int = int(os.getenv("EMBEDDING_QUEUE_MAX_PROCESSING_TIME", "50"))
    # 10x the default provider timeout
    lease_timeout: int = int(os.getenv("EMBEDDING_QUEUE_LEASE_TIMEOUT", "300"))
    max_attempts: int = int(os.getenv("EMBEDDING_QUEUE_MAX_ATTEMPTS", "3"))
    stall_backoff: float = float(os.getenv("EMBEDDING_QUEUE_STALL_BACKOFF", "1.0"))
    max_idle_rounds: int = int(os.getenv("EMBEDDING_QUEUE_MAX_IDLE_ROUNDS", "3"))
    priority_levels: dict[str, int] = field(
        default_factory=lambda: {
            "high": int(os.getenv("EMBEDDING_QUEUE_PRIORITY_HIGH", "50")),
            "normal": int(os.getenv("EMBEDDING_QUEUE_PRIORITY_NORMAL", "100")),
            "low": int(os.getenv("EMBEDDING_QUEUE_PRIORITY_LOW", "200")),
        }
    )
    key_prefix: str = os.getenv("EMBEDDING_QUEUE_KEY_PREFIX", "embedding_queue")

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("EMBEDDING_QUEUE_BATCH_SIZE must be positive")
        if self.lease_timeout < 1:
            raise ValueError("EMBEDDING_QUEUE_LEASE_TIMEOUT must be positive")
        levels = self.priority_levels
        if set(levels) != {"high", "normal", "low"}:
            raise ValueError("Priority levels must define exactly high, normal and low")
        if not levels["high"] < levels["normal"] < levels["low"]:
            raise ValueError("Priority levels must satisfy high < normal < low")


@dataclass(frozen=True)
class HybridSettings:
    """Hybrid ranking and search index settings."""

    text_weight: float = float(os.getenv("HYBRID_TEXT_WEIGHT", "0.7"))
    vector_weight: float = float(os.getenv("HYBRID_VECTOR_WEIGHT", "0.3"))
    similarity_threshold: float = float(os.getenv("HYBRID_SIMILARITY_THRESHOLD", "0.1"))
    default_mode: str = os.getenv("HYBRID_DEFAULT_MODE", "hybrid")
    fts_configuration: str = os.getenv("FTS_CONFIGURATION", "english")
    index_table_prefix: str = os.getenv("INDEX_TABLE_PREFIX", "search_index_")
    vector_index_method: str = os.getenv("VECTOR_INDEX_METHOD", "hnsw")  # "hnsw" or "ivfflat"
    ivfflat_lists: int = int(os.getenv("VECTOR_INDEX_IVFFLAT_LISTS", "100"))
    hnsw_m: int = int(os.getenv("VECTOR_INDEX_HNSW_M", "16"))
    hnsw_ef_construction: int = int(os.getenv("VECTOR_INDEX_HNSW_EF_CONSTRUCTION", "64"))

    def __post_init__(self) -> None:
        if self.text_weight < 0 or self.vector_weight < 0:
            raise ValueError("Hybrid weights must be non-negative")
        if not 0 <= self.similarity_threshold <= 1:
            raise ValueError("HYBRID_SIMILARITY_THRESHOLD must be between 0 and 1")
        if self.default_mode not in ("text_only", "vector_only", "hybrid"):
            raise ValueError(f"Unknown HYBRID_DEFAULT_MODE: {self.default_mode}")
        if self.vector_index_method not in ("hnsw", "ivfflat"):
            raise ValueError(f"Unknown VECTOR_INDEX_METHOD: {self.vector_index_method}")


@dataclass(frozen=True)
class EmbeddingSettings:
    """Embedding provider settings."""

    provider: str = os.getenv("EMBEDDING_PROVIDER", "openai")  # "openai", "ollama" or "local"
    model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
    timeout: float = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
    max_retries: int = int(os.getenv("EMBEDDING_MAX_RETRIES", "3"))
    retry_delay: float = float(os.getenv("EMBEDDING_RETRY_DELAY", "1.0"))
    query_max_retries: int = int(os.getenv("EMBEDDING_QUERY_MAX_RETRIES", "0"))
    circuit_failure_threshold: int = int(os.getenv("EMBEDDING_CIRCUIT_FAILURE_THRESHOLD", "5"))
    circuit_recovery_timeout: float = float(os.getenv("EMBEDDING_CIRCUIT_RECOVERY_TIMEOUT", "60"))
    circuit_success_threshold: int = int(os.getenv("EMBEDDING_CIRCUIT_SUCCESS_THRESHOLD", "3"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

    def __post_init__(self) -> None:
        if self.provider not in ("openai", "ollama", "local"):
            raise ValueError(f"Unknown EMBEDDING_PROVIDER: {self.provider}")
        if not 1 <= self.dimension <= 16000:
            raise ValueError("EMBEDDING_DIMENSION must be between 1 and 16000")


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # Storage
    database_url: str = os.getenv("DATABASE_URL", "postgresql+psycopg2://localhost/search")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_password: str | None = os.getenv("REDIS_PASSWORD")

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_reload: bool = _env_bool("API_RELOAD", "false")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Search server this process indexes for (queue gating)
    server_id: str = os.getenv("SEARCH_SERVER_ID", "default")

    cache: CacheSettings = field(default_factory=CacheSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    hybrid: HybridSettings = field(default_factory=HybridSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def get_redis_client() -> redis.Redis:
    """Create a Redis client instance."""
    return redis.from_url(
        settings.redis_url,
        password=settings.redis_password,
        decode_responses=True,
    )


def get_engine() -> Engine:
    """Create a SQLAlchemy engine for the search database."""
    return create_engine(settings.database_url, pool_pre_ping=True, future=True)
