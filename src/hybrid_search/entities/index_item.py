"""Indexed item domain entities."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class IndexField:
    name: str
    value: Any
    searchable: bool = True


@dataclass(frozen=True)
class IndexItem:
    """An item handed over by the host indexing framework.

    Attributes:
        item_id: Unique id within the index
        datasource: Where the item comes from (e.g. "entity:node")
        language: Language code of the item
        fields: Field values; only searchable ones feed full-text and embeddings
        embedding: Optional precomputed embedding for the searchable text
    """

    item_id: str
    datasource: str = "default"
    language: str = "und"
    fields: tuple[IndexField, ...] = ()
    embedding: list[float] | None = None

    def search_text(self) -> str:
        """Concatenate searchable field values into one text blob."""
        parts: list[str] = []
        for f in self.fields:
            if not f.searchable or f.value is None:
                continue
            values = f.value if isinstance(f.value, (list, tuple)) else [f.value]
            parts.extend(str(v).strip() for v in values if str(v).strip())
        return " ".join(parts)

    def field_values(self) -> dict[str, Any]:
        return {f.name: f.value for f in self.fields}


@dataclass(frozen=True)
class IndexRow:
    """One stored row of a search index table."""

    item_id: str
    datasource: str
    language: str
    fields: dict[str, Any]
    search_text: str
    embedding: list[float] | None = None


@dataclass
class IndexingReport:
    """What happened to a batch of items on the write path."""

    indexed: list[str] = field(default_factory=list)
    embedded: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)
    without_embedding: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    def add_message(self, message: str) -> None:
        if message not in self.messages:
            self.messages.append(message)
