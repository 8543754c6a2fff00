"""Redis implementation of JobStore.

Keys (all under a configurable prefix):
    {prefix}:pending  sorted set, member = job id, score = priority
    {prefix}:jobs     hash, job id -> JSON payload
    {prefix}:leases   sorted set, member = job id, score = lease deadline
    {prefix}:owners   hash, job id -> worker id

Job ids start with a zero-padded enqueue timestamp, so members with the
same priority sort in FIFO order. Claims and lease reconciliation use
WATCH/MULTI so two workers never claim the same job.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

import redis

from hybrid_search.config import get_redis_client, settings
from hybrid_search.degradation import DegradationEvent, DegradationKind
from hybrid_search.entities import ClaimedJob, QueueItem

logger = logging.getLogger(__name__)


def _text(value: Any) -> Any:
    return value.decode() if isinstance(value, bytes) else value


class RedisJobStore:
    """Redis sorted-set job store shared by all workers.

    This class satisfies the JobStore protocol through structural typing -
    no explicit inheritance needed.

    Example:
        ```python
        store = RedisJobStore.create()
        job_id = store.put(item)
        job = store.claim("worker-1", lease_seconds=300)
        store.delete(job.job_id, job.claimed_by)
        ```
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        key_prefix: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis job store.

        Args:
            redis_client: Redis client instance. If None, creates default.
            key_prefix: Prefix for the queue keys. Defaults to settings.
            clock: Returns the current Unix time (lease deadlines).
        """
        self._client = redis_client or get_redis_client()
        prefix = key_prefix or settings.queue.key_prefix
        self._pending = f"{prefix}:pending"
        self._jobs = f"{prefix}:jobs"
        self._leases = f"{prefix}:leases"
        self._owners = f"{prefix}:owners"
        self._clock = clock

    @classmethod
    def create(cls, key_prefix: str | None = None) -> "RedisJobStore":
        """Factory method to create RedisJobStore with defaults.

        Args:
            key_prefix: Queue key prefix. If None, uses settings.

        Returns:
            Configured RedisJobStore
        """
        return cls(key_prefix=key_prefix)

    def put(self, item: QueueItem) -> str:
        job_id = f"{int(self._clock() * 1000):015d}-{uuid.uuid4().hex[:8]}"
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.hset(self._jobs, job_id, json.dumps(item.to_payload()))
            pipe.zadd(self._pending, {job_id: item.priority})
            pipe.execute()
        except redis.RedisError as e:
            raise self._degraded("enqueue", e) from e
        return job_id

    def claim(self, worker_id: str, lease_seconds: float) -> ClaimedJob | None:
        self.reclaim_expired()
        try:
            while True:
                with self._client.pipeline() as pipe:
                    try:
                        pipe.watch(self._pending)
                        head = pipe.zrange(self._pending, 0, 0)
                        if not head:
                            pipe.unwatch()
                            return None
                        job_id = _text(head[0])
                        until = self._clock() + lease_seconds
                        pipe.multi()
                        pipe.zrem(self._pending, job_id)
                        pipe.zadd(self._leases, {job_id: until})
                        pipe.hset(self._owners, job_id, worker_id)
                        pipe.hget(self._jobs, job_id)
                        results = pipe.execute()
                    except redis.WatchError:
                        # Another worker claimed first; try the new head
                        continue

                payload = _text(results[3])
                if payload is None:
                    logger.warning("Dropping queue job %s without payload", job_id)
                    self.delete(job_id, worker_id)
                    continue
                item = QueueItem.from_payload(json.loads(payload))
                return ClaimedJob(job_id, item, worker_id, until)
        except redis.RedisError as e:
            raise self._degraded("claim", e) from e

    def delete(self, job_id: str, worker_id: str) -> bool:
        try:
            while True:
                with self._client.pipeline() as pipe:
                    try:
                        pipe.watch(self._owners)
                        if _text(pipe.hget(self._owners, job_id)) != worker_id:
                            pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.zrem(self._leases, job_id)
                        pipe.hdel(self._owners, job_id)
                        pipe.hdel(self._jobs, job_id)
                        results = pipe.execute()
                    except redis.WatchError:
                        continue
                return results[2] > 0
        except redis.RedisError as e:
            raise self._degraded("delete", e) from e

    def release(self, job_id: str, worker_id: str) -> bool:
        try:
            while True:
                with self._client.pipeline() as pipe:
                    try:
                        # A lease that expired and was claimed again belongs to the new owner
                        pipe.watch(self._leases, self._owners)
                        owner = _text(pipe.hget(self._owners, job_id))
                        if owner != worker_id or pipe.zscore(self._leases, job_id) is None:
                            pipe.unwatch()
                            return False
                        payload = _text(pipe.hget(self._jobs, job_id))
                        pipe.multi()
                        pipe.zrem(self._leases, job_id)
                        pipe.hdel(self._owners, job_id)
                        if payload is not None:
                            pipe.zadd(self._pending, {job_id: json.loads(payload)["priority"]})
                        pipe.execute()
                        return payload is not None
                    except redis.WatchError:
                        continue
        except redis.RedisError as e:
            raise self._degraded("release", e) from e

    def reclaim_expired(self) -> int:
        try:
            while True:
                with self._client.pipeline() as pipe:
                    try:
                        pipe.watch(self._leases)
                        expired = [_text(j) for j in pipe.zrangebyscore(self._leases, "-inf", self._clock())]
                        if not expired:
                            pipe.unwatch()
                            return 0
                        payloads = pipe.hmget(self._jobs, expired)
                        pipe.multi()
                        for job_id, payload in zip(expired, payloads):
                            pipe.zrem(self._leases, job_id)
                            pipe.hdel(self._owners, job_id)
                            if payload is not None:
                                priority = json.loads(_text(payload))["priority"]
                                pipe.zadd(self._pending, {job_id: priority})
                        pipe.execute()
                    except redis.WatchError:
                        continue
                logger.info("Returned %d expired queue leases", len(expired))
                return len(expired)
        except redis.RedisError as e:
            raise self._degraded("reclaim", e) from e

    def count(self) -> int:
        try:
            return int(self._client.zcard(self._pending))
        except redis.RedisError as e:
            raise self._degraded("count", e) from e

    def claimed_count(self) -> int:
        try:
            return int(self._client.zcard(self._leases))
        except redis.RedisError as e:
            raise self._degraded("count", e) from e

    def pending_items(self) -> list[QueueItem]:
        try:
            job_ids = [_text(j) for j in self._client.zrange(self._pending, 0, -1)]
            if not job_ids:
                return []
            payloads = self._client.hmget(self._jobs, job_ids)
        except redis.RedisError as e:
            raise self._degraded("inspect", e) from e
        return [QueueItem.from_payload(json.loads(_text(p))) for p in payloads if p is not None]

    def clear(self) -> int:
        try:
            count = int(self._client.hlen(self._jobs))
            self._client.delete(self._pending, self._jobs, self._leases, self._owners)
        except redis.RedisError as e:
            raise self._degraded("clear", e) from e
        return count

    def _degraded(self, operation: str, error: Exception) -> DegradationEvent:
        return DegradationEvent.create(
            DegradationKind.QUEUE_DEGRADED,
            f"redis job store {operation}: {error}",
            {"operation": operation},
        )
