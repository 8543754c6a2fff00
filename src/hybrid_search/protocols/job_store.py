"""Job store protocol for the embedding queue.

A job store keeps pending queue items ordered by priority (lower first,
FIFO within a priority) and hands them out under exclusive, time-limited
leases.

Implementations:
- Redis sorted sets (durable, shared between workers)
- In-process heap (volatile, single process and tests)
"""

from typing import Protocol, runtime_checkable

from hybrid_search.entities import ClaimedJob, QueueItem


@runtime_checkable
class JobStore(Protocol):
    """Protocol for embedding queue storage."""

    def put(self, item: QueueItem) -> str:
        """Add an item to the pending set.

        Returns:
            The job id
        """
        ...

    def claim(self, worker_id: str, lease_seconds: float) -> ClaimedJob | None:
        """Claim the most urgent pending item under a lease.

        Expired leases are returned to the pending set before claiming.

        Returns:
            The claimed job, or None when nothing is pending
        """
        ...

    def delete(self, job_id: str, worker_id: str) -> bool:
        """Remove a claimed job permanently.

        Only the worker currently holding the lease may delete the job.

        Returns:
            False if the job is gone or leased to another worker
        """
        ...

    def release(self, job_id: str, worker_id: str) -> bool:
        """Return a claimed job to the pending set.

        Only the worker currently holding the lease may release the job.

        Returns:
            False if the job is not leased to ``worker_id``
        """
        ...

    def reclaim_expired(self) -> int:
        """Return jobs with expired leases to the pending set.

        Returns:
            Number of jobs returned
        """
        ...

    def count(self) -> int:
        """Number of pending (unclaimed) jobs."""
        ...

    def claimed_count(self) -> int:
        """Number of jobs currently under lease."""
        ...

    def pending_items(self) -> list[QueueItem]:
        """All pending items, most urgent first."""
        ...

    def clear(self) -> int:
        """Delete all jobs, pending or claimed. Returns how many were removed."""
        ...
