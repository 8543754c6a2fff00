"""Embedding queue domain entities."""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class QueueOperation(str, Enum):
    GENERATE_SINGLE = "generate_single"
    GENERATE_BATCH = "generate_batch"
    REGENERATE_INDEX_RANGE = "regenerate_index_range"


# Payload fields each operation needs on top of server_id and index_id
REQUIRED_FIELDS: dict[QueueOperation, tuple[str, ...]] = {
    QueueOperation.GENERATE_SINGLE: ("item_id", "text"),
    QueueOperation.GENERATE_BATCH: ("items",),
    QueueOperation.REGENERATE_INDEX_RANGE: ("batch_size", "offset"),
}


@dataclass(frozen=True)
class QueueItem:
    """A unit of embedding work.

    Attributes:
        operation: Which handler processes the item
        server_id: Search server the index belongs to
        index_id: Search index the rows live in
        data: Operation-specific fields (item_id + text, items map, or
            batch_size + offset)
        priority: Lower values are claimed first
        enqueued_at: Unix timestamp of the enqueue
        attempt: How many times the work has been retried
    """

    operation: QueueOperation
    server_id: str
    index_id: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: int = 100
    enqueued_at: float = field(default_factory=time.time)
    attempt: int = 0

    def validate(self) -> None:
        """Raise ValueError when a required payload field is missing."""
        if not self.server_id or not self.index_id:
            raise ValueError(f"{self.operation.value} requires server_id and index_id")
        missing = [name for name in REQUIRED_FIELDS[self.operation] if self.data.get(name) in (None, "")]
        if missing:
            raise ValueError(f"{self.operation.value} payload missing: {', '.join(missing)}")

    def next_attempt(self, **data: Any) -> "QueueItem":
        """Copy for a retry, with ``attempt`` incremented and ``data`` overridden."""
        return replace(self, data={**self.data, **data}, attempt=self.attempt + 1, enqueued_at=time.time())

    def to_payload(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "server_id": self.server_id,
            "index_id": self.index_id,
            "priority": self.priority,
            "created_at": self.enqueued_at,
            "attempt": self.attempt,
            **self.data,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "QueueItem":
        payload = dict(payload)
        operation = QueueOperation(payload.pop("operation"))
        return cls(
            operation=operation,
            server_id=payload.pop("server_id", ""),
            index_id=payload.pop("index_id", ""),
            priority=int(payload.pop("priority", 100)),
            enqueued_at=float(payload.pop("created_at", 0.0)),
            attempt=int(payload.pop("attempt", 0)),
            data=payload,
        )


@dataclass(frozen=True)
class ClaimedJob:
    """A queue item held under an exclusive lease."""

    job_id: str
    item: QueueItem
    claimed_by: str
    claimed_until: float
