"""Embedding provider protocol.

Defines the interface for any embedding generation service that can
convert text to vector embeddings.

Implementations:
- OpenAI-compatible embeddings API
- Ollama local API
- sentence-transformers (local)
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding generation services.

    Providers are synchronous: query-time embeddings are generated inline and
    queue workers call them from a plain loop.
    """

    @property
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Return the name/identifier of the model.

        Part of the cache key metadata, so switching models never serves
        stale vectors.
        """
        ...

    def encode(self, text: str) -> list[float]:
        """Generate embedding vector for a single text.

        Args:
            text: The text to encode

        Returns:
            The embedding vector as a list of floats
        """
        ...

    def encode_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, in input order.

        Args:
            texts: List of texts to encode

        Returns:
            List of embedding vectors
        """
        ...

    def is_available(self) -> bool:
        """Check if the embedding provider is available."""
        ...
