"""SQL implementation of EmbeddingCache.

Embeddings are stored in a single table shared by every worker. Writes are
atomic upserts (``INSERT ... ON CONFLICT DO UPDATE``) so concurrent workers
never lose a hit count increment; the vector itself is last-writer-wins.

Table layout:
    text_hash       CHAR(64) primary key
    embedding_data  BLOB     1-byte format marker + little-endian float64 payload
    dimensions      INTEGER
    created         FLOAT    Unix timestamp
    last_accessed   FLOAT    Unix timestamp
    expires         FLOAT    Unix timestamp
    hit_count       INTEGER
"""

import logging
import random
import time
import zlib
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import numpy as np
from sqlalchemy import (
    CHAR,
    Column,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Table,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from hybrid_search.config import get_engine, settings
from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.entities import MaintenanceResult
from hybrid_search.utils import validate_cache_key, vector_problem

logger = logging.getLogger(__name__)

_COMPRESSED = b"z"
_RAW = b"r"


def build_cache_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("text_hash", CHAR(64), primary_key=True),
        Column("embedding_data", LargeBinary, nullable=False),
        Column("dimensions", Integer, nullable=False),
        Column("created", Float, nullable=False),
        Column("last_accessed", Float, nullable=False),
        Column("expires", Float, nullable=False),
        Column("hit_count", Integer, nullable=False, default=0),
        Index(f"{name}_expires_idx", "expires"),
        Index(f"{name}_last_accessed_idx", "last_accessed"),
        Index(f"{name}_hit_count_idx", "hit_count"),
    )


def encode_vector(vector: list[float], compress: bool) -> bytes:
    payload = np.asarray(vector, dtype="<f8").tobytes()
    if compress:
        return _COMPRESSED + zlib.compress(payload)
    return _RAW + payload


def decode_vector(data: bytes) -> list[float]:
    marker, payload = data[:1], data[1:]
    if marker == _COMPRESSED:
        payload = zlib.decompress(payload)
    elif marker != _RAW:
        raise ValueError(f"Unknown embedding payload marker: {marker!r}")
    return np.frombuffer(payload, dtype="<f8").tolist()


class DatabaseEmbeddingCache:
    """SQLAlchemy-backed embedding cache.

    This class satisfies the EmbeddingCache protocol through structural
    typing - no explicit inheritance needed.

    Supports PostgreSQL (production) and SQLite (tests); both provide the
    ``ON CONFLICT`` upsert the cache relies on.

    Example:
        ```python
        cache = DatabaseEmbeddingCache.create()
        cache.set(key, [0.1, 0.2, 0.3])
        cache.get(key)  # [0.1, 0.2, 0.3]
        ```
    """

    def __init__(
        self,
        engine: Engine,
        table_name: str | None = None,
        ttl: int | None = None,
        max_entries: int | None = None,
        cleanup_probability: float | None = None,
        compression: bool | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        create_table: bool = True,
    ) -> None:
        """Initialize the database cache.

        Args:
            engine: SQLAlchemy engine (PostgreSQL or SQLite).
            table_name: Cache table name. Defaults to settings.
            ttl: Default time-to-live in seconds. Defaults to settings.
            max_entries: Capacity enforced by maintenance(). Defaults to settings.
            cleanup_probability: Chance that a write triggers maintenance.
            compression: zlib-compress stored vectors. Defaults to settings.
            clock: Returns the current Unix time.
            rng: Random source for probabilistic maintenance.
            create_table: Create the table if it does not exist.
        """
        cfg = settings.cache
        self._engine = engine
        self._ttl = cfg.ttl if ttl is None else ttl
        self._max_entries = cfg.max_entries if max_entries is None else max_entries
        self._cleanup_probability = (
            cfg.cleanup_probability if cleanup_probability is None else cleanup_probability
        )
        self._compression = cfg.compression if compression is None else compression
        self._clock = clock
        self._rng = rng or random.Random()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "invalidations": 0}

        dialect = engine.dialect.name
        if dialect == "postgresql":
            self._insert = pg_insert
        elif dialect == "sqlite":
            self._insert = sqlite_insert
        else:
            raise ValueError(f"Unsupported database dialect for the embedding cache: {dialect}")

        self._metadata = MetaData()
        self._table = build_cache_table(self._metadata, table_name or cfg.table_name)
        if create_table:
            with self._storage("create table"):
                self._metadata.create_all(engine, tables=[self._table])

    @classmethod
    def create(cls, engine: Engine | None = None, **kwargs) -> "DatabaseEmbeddingCache":
        """Factory method to create DatabaseEmbeddingCache with defaults.

        Args:
            engine: SQLAlchemy engine. If None, uses DATABASE_URL.
            **kwargs: Forwarded to the constructor.

        Returns:
            Configured DatabaseEmbeddingCache
        """
        return cls(engine=engine or get_engine(), **kwargs)

    @property
    def table(self) -> Table:
        return self._table

    def get(self, key: str) -> list[float] | None:
        validate_cache_key(key)
        hits = self._fetch([key])
        if key in hits:
            self._stats["hits"] += 1
            return hits[key]
        self._stats["misses"] += 1
        return None

    def set(self, key: str, vector: list[float], ttl: int | None = None) -> bool:
        validate_cache_key(key)
        problem = vector_problem(vector)
        if problem:
            logger.warning("Refusing to cache embedding %s: %s", key[:12], problem)
            return False

        now = self._clock()
        t = self._table
        stmt = self._insert(t).values(
            text_hash=key,
            embedding_data=encode_vector(vector, self._compression),
            dimensions=len(vector),
            created=now,
            last_accessed=now,
            expires=now + (ttl if ttl is not None else self._ttl),
            hit_count=0,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.text_hash],
            set_={
                "embedding_data": stmt.excluded.embedding_data,
                "dimensions": stmt.excluded.dimensions,
                "last_accessed": stmt.excluded.last_accessed,
                "expires": stmt.excluded.expires,
                "hit_count": t.c.hit_count + 1,
            },
        )
        with self._storage("set"), self._engine.begin() as conn:
            conn.execute(stmt)
        self._stats["sets"] += 1

        if self._rng.random() < self._cleanup_probability:
            # The entry is already committed; a failed cleanup does not fail the write
            try:
                self.maintenance()
            except DegradationEvent as e:
                logger.warning("Embedding cache maintenance failed after write: %s", e.technical_message)
        return True

    def get_multiple(self, keys: list[str]) -> dict[str, list[float]]:
        valid: list[str] = []
        for key in keys:
            try:
                validate_cache_key(key)
            except ValueError as e:
                logger.warning("Skipping cache lookup: %s", e)
                continue
            valid.append(key)
        keys = valid
        if not keys:
            return {}
        hits = self._fetch(list(dict.fromkeys(keys)))
        self._stats["hits"] += sum(1 for key in keys if key in hits)
        self._stats["misses"] += sum(1 for key in keys if key not in hits)
        return hits

    def set_multiple(self, items: dict[str, list[float]], ttl: int | None = None) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for key, vector in items.items():
            try:
                results[key] = self.set(key, vector, ttl)
            except (ValueError, DegradationEvent) as e:
                logger.warning("Skipping cache entry %s: %s", str(key)[:12], e)
                results[key] = False
        return results

    def invalidate(self, key: str) -> bool:
        validate_cache_key(key)
        with self._storage("invalidate"), self._engine.begin() as conn:
            result = conn.execute(delete(self._table).where(self._table.c.text_hash == key))
        if result.rowcount > 0:
            self._stats["invalidations"] += 1
            return True
        return False

    def clear(self) -> int:
        with self._storage("clear"), self._engine.begin() as conn:
            result = conn.execute(delete(self._table))
        return result.rowcount

    def maintenance(self) -> MaintenanceResult:
        t = self._table
        now = self._clock()
        with self._storage("maintenance"), self._engine.begin() as conn:
            expired = conn.execute(delete(t).where(t.c.expires <= now)).rowcount
            total = conn.execute(select(func.count()).select_from(t)).scalar_one()
            evicted = 0
            excess = total - self._max_entries
            if excess > 0:
                victims = (
                    select(t.c.text_hash)
                    .order_by(t.c.last_accessed.asc(), t.c.hit_count.asc())
                    .limit(excess)
                )
                keys = conn.execute(victims).scalars().all()
                evicted = conn.execute(delete(t).where(t.c.text_hash.in_(keys))).rowcount

        if expired or evicted:
            logger.info("Embedding cache maintenance removed %d expired, evicted %d", expired, evicted)
        return MaintenanceResult(expired_removed=expired, evicted=evicted)

    def get_stats(self) -> dict:
        t = self._table
        now = self._clock()
        with self._storage("stats"), self._engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(t)).scalar_one()
            expired = conn.execute(
                select(func.count()).select_from(t).where(t.c.expires <= now)
            ).scalar_one()
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "backend": "database",
            "total_entries": total,
            "expired_entries": expired,
            "max_entries": self._max_entries,
            "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
        }

    def _fetch(self, keys: list[str]) -> dict[str, list[float]]:
        """Read live entries and record the access.

        Rows whose payload cannot be decoded are deleted and reported as
        misses.
        """
        t = self._table
        now = self._clock()
        hits: dict[str, list[float]] = {}
        corrupt: list[str] = []
        with self._storage("get"), self._engine.begin() as conn:
            rows = conn.execute(
                select(t.c.text_hash, t.c.embedding_data).where(
                    t.c.text_hash.in_(keys), t.c.expires > now
                )
            ).all()
            for row in rows:
                try:
                    hits[row.text_hash] = decode_vector(row.embedding_data)
                except (ValueError, zlib.error) as e:
                    corrupt.append(row.text_hash)
                    logger.warning("Dropping undecodable embedding cache entry %s: %s", row.text_hash[:12], e)
            if corrupt:
                conn.execute(delete(t).where(t.c.text_hash.in_(corrupt)))
            if hits:
                conn.execute(
                    update(t)
                    .where(t.c.text_hash.in_(list(hits)))
                    .values(last_accessed=now, hit_count=t.c.hit_count + 1)
                )
        return hits

    @contextmanager
    def _storage(self, operation: str) -> Iterator[None]:
        """Re-raise SQLAlchemy errors as CACHE_DEGRADED events."""
        try:
            yield
        except SQLAlchemyError as e:
            raise DegradationEvent.create(
                DegradationKind.CACHE_DEGRADED,
                f"database embedding cache ({operation})",
                {"operation": operation, "error": str(e)},
            ) from e
