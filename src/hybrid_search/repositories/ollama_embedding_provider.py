"""Ollama-based embedding provider.

Uses Ollama's local API to generate embeddings. Ollama serves models locally
without requiring an API key or downloading models manually.

Requirements:
    - Ollama installed: https://ollama.com
    - Model pulled: `ollama pull nomic-embed-text`
    - Ollama running: `ollama serve` (usually runs automatically)

Models available:
- nomic-embed-text (137M params, 768 dims)
- embeddinggemma (308M params, 768 dims, 2K context)
- mxbai-embed-large (335M params, 1024 dims)
- all-minilm (22M params, 384 dims)
"""

import logging

import httpx

from hybrid_search.config import settings

logger = logging.getLogger(__name__)


class OllamaEmbeddingProvider:
    """Ollama-based implementation of EmbeddingProvider protocol.

    This class satisfies the EmbeddingProvider protocol through structural
    typing - no explicit inheritance needed.

    The API endpoint is http://localhost:11434/api/embed by default. It
    accepts a list of inputs, so batches are a single request.

    Example:
        ```python
        provider = OllamaEmbeddingProvider.create(model_name="nomic-embed-text")
        embedding = provider.encode("Hello, world!")
        print(len(embedding))  # 768
        ```
    """

    # Known model dimensions (for common models)
    MODEL_DIMENSIONS = {
        "nomic-embed-text": 768,
        "embeddinggemma": 768,
        "embeddinggemma:300m": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
        "all-minilm:l6-v2": 384,
    }

    # 2K token context, ~3 characters per token
    MAX_INPUT_CHARS = 2048 * 3

    def __init__(
        self,
        model_name: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the Ollama embedding provider.

        Args:
            model_name: Name of the Ollama model. Defaults to settings.
            base_url: Ollama API base URL. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            client: Preconfigured httpx client.
        """
        self._model_name = model_name or settings.embedding.model
        self._base_url = (base_url or settings.embedding.ollama_base_url).rstrip("/")
        self._timeout = timeout or settings.embedding.timeout
        self._dimension: int | None = None
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy-load the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
        return self._client

    @classmethod
    def create(
        cls,
        model_name: str | None = None,
        base_url: str | None = None,
    ) -> "OllamaEmbeddingProvider":
        """Factory method to create OllamaEmbeddingProvider with defaults.

        Args:
            model_name: Model name. If None, uses settings.
            base_url: Ollama API URL. If None, uses settings.

        Returns:
            Configured OllamaEmbeddingProvider
        """
        return cls(model_name=model_name, base_url=base_url)

    @property
    def dimension(self) -> int:
        """Get the embedding vector dimension.

        Known models report their documented dimension; unknown models use
        the configured EMBEDDING_DIMENSION until the first response arrives.
        """
        if self._dimension is None:
            return self.MODEL_DIMENSIONS.get(self._model_name, settings.embedding.dimension)
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def max_input_chars(self) -> int:
        return self.MAX_INPUT_CHARS

    def encode(self, text: str) -> list[float]:
        return self.encode_batch([text])[0]

    def encode_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in one request.

        Args:
            texts: List of texts to encode

        Returns:
            List of embedding vectors

        Raises:
            httpx.HTTPStatusError: For non-2xx responses
            RuntimeError: If Ollama cannot be reached
            ValueError: If response format is invalid
        """
        if not texts:
            return []
        url = f"{self._base_url}/api/embed"
        payload = {"model": self._model_name, "input": texts}

        try:
            response = self.client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.warning("Ollama model not found. Try: ollama pull %s", self._model_name)
            raise
        except httpx.HTTPError as e:
            raise RuntimeError(f"Ollama API error: {e} (is Ollama running? Try: ollama serve)") from e

        embeddings = response.json().get("embeddings")
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise ValueError(f"Unexpected response format from Ollama for {len(texts)} inputs")
        if embeddings and self._dimension is None:
            self._dimension = len(embeddings[0])
        return [list(map(float, e)) for e in embeddings]

    def is_available(self) -> bool:
        """Check if Ollama is running and the model answers."""
        try:
            self.encode("test")
            return True
        except (httpx.HTTPError, RuntimeError, ValueError):
            return False

    def close(self) -> None:
        """Close the HTTP client.

        Should be called when shutting down the application.
        """
        if self._client is not None:
            self._client.close()
            self._client = None
