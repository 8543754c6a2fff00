"""In-process implementation of JobStore.

A heap keeps pending jobs ordered by (priority, insertion order). Leases
are tracked in a dictionary and reconciled on every claim, exactly like the
Redis store, so the queue manager behaves the same against both.
"""

import heapq
import itertools
import time
import uuid
from collections.abc import Callable

from hybrid_search.entities import ClaimedJob, QueueItem


class MemoryJobStore:
    """Heap-backed job store for a single process.

    This class satisfies the JobStore protocol through structural typing -
    no explicit inheritance needed.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counter = itertools.count()
        self._heap: list[tuple[int, int, str]] = []
        self._jobs: dict[str, QueueItem] = {}
        self._sequence: dict[str, int] = {}
        self._pending: set[str] = set()
        self._leases: dict[str, tuple[str, float]] = {}

    def put(self, item: QueueItem) -> str:
        job_id = uuid.uuid4().hex
        seq = next(self._counter)
        self._jobs[job_id] = item
        self._sequence[job_id] = seq
        self._push(job_id)
        return job_id

    def claim(self, worker_id: str, lease_seconds: float) -> ClaimedJob | None:
        self.reclaim_expired()
        while self._heap:
            _, _, job_id = heapq.heappop(self._heap)
            if job_id not in self._pending:
                continue
            self._pending.discard(job_id)
            until = self._clock() + lease_seconds
            self._leases[job_id] = (worker_id, until)
            return ClaimedJob(job_id, self._jobs[job_id], worker_id, until)
        return None

    def delete(self, job_id: str, worker_id: str) -> bool:
        if not self._holds(job_id, worker_id):
            return False
        del self._jobs[job_id]
        del self._leases[job_id]
        self._sequence.pop(job_id, None)
        return True

    def release(self, job_id: str, worker_id: str) -> bool:
        if not self._holds(job_id, worker_id):
            return False
        self._requeue(job_id)
        return True

    def reclaim_expired(self) -> int:
        now = self._clock()
        expired = [job_id for job_id, (_, until) in self._leases.items() if until <= now]
        for job_id in expired:
            self._requeue(job_id)
        return len(expired)

    def count(self) -> int:
        return len(self._pending)

    def claimed_count(self) -> int:
        return len(self._leases)

    def pending_items(self) -> list[QueueItem]:
        ordered = sorted(
            (self._jobs[job_id].priority, self._sequence[job_id], job_id) for job_id in self._pending
        )
        return [self._jobs[job_id] for _, _, job_id in ordered]

    def clear(self) -> int:
        count = len(self._jobs)
        self._heap.clear()
        self._jobs.clear()
        self._sequence.clear()
        self._pending.clear()
        self._leases.clear()
        return count

    def _holds(self, job_id: str, worker_id: str) -> bool:
        lease = self._leases.get(job_id)
        return lease is not None and lease[0] == worker_id and job_id in self._jobs

    def _requeue(self, job_id: str) -> None:
        self._leases.pop(job_id, None)
        if job_id in self._jobs:
            self._push(job_id)

    def _push(self, job_id: str) -> None:
        self._pending.add(job_id)
        heapq.heappush(self._heap, (self._jobs[job_id].priority, self._sequence[job_id], job_id))
