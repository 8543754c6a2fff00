"""OpenAI-compatible embedding provider.

Calls the ``/embeddings`` endpoint of the OpenAI API (or any server that
speaks the same protocol, such as Azure OpenAI proxies or vLLM).

Errors are not retried here: HTTP status errors propagate as
``httpx.HTTPStatusError`` so the embedding service can classify 429 and 5xx
responses and apply its own backoff and circuit breaker.

Models:
- text-embedding-3-small (1536 dims, default)
- text-embedding-3-large (3072 dims)
- text-embedding-ada-002 (1536 dims)
"""

import logging

import httpx

from hybrid_search.config import settings

logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider:
    """OpenAI-based implementation of EmbeddingProvider protocol.

    This class satisfies the EmbeddingProvider protocol through structural
    typing - no explicit inheritance needed.

    Example:
        ```python
        provider = OpenAIEmbeddingProvider.create(api_key="sk-...")
        embedding = provider.encode("Hello, world!")
        print(len(embedding))  # 1536
        ```
    """

    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    # ~3 characters per token for the 8192 token input limit
    MAX_INPUT_CHARS = 8192 * 3

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        dimensions: int | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the OpenAI embedding provider.

        Args:
            api_key: API key. Defaults to settings (OPENAI_API_KEY).
            model_name: Embedding model. Defaults to settings.
            base_url: API base URL. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            dimensions: Requested output dimension for models that
                support shortening (text-embedding-3-*).
            client: Preconfigured httpx client (tests use a MockTransport).
        """
        cfg = settings.embedding
        self._api_key = api_key if api_key is not None else cfg.openai_api_key
        self._model_name = model_name or cfg.model
        self._base_url = (base_url or cfg.openai_base_url).rstrip("/")
        self._timeout = timeout or cfg.timeout
        self._dimensions = dimensions
        self._client = client

    @classmethod
    def create(
        cls,
        api_key: str | None = None,
        model_name: str | None = None,
        base_url: str | None = None,
    ) -> "OpenAIEmbeddingProvider":
        """Factory method to create OpenAIEmbeddingProvider with defaults.

        Args:
            api_key: API key. If None, uses settings.
            model_name: Model name. If None, uses settings.
            base_url: API URL. If None, uses settings.

        Returns:
            Configured OpenAIEmbeddingProvider
        """
        return cls(api_key=api_key, model_name=model_name, base_url=base_url)

    @property
    def client(self) -> httpx.Client:
        """Lazy-load the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    @property
    def dimension(self) -> int:
        if self._dimensions:
            return self._dimensions
        return self.MODEL_DIMENSIONS.get(self._model_name, settings.embedding.dimension)

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
            List of embedding vectors, in input order

        Raises:
            RuntimeError: If no API key is configured
            httpx.HTTPStatusError: For non-2xx responses
            httpx.HTTPError: For transport failures
            ValueError: If the response is malformed
        """
        if not self._api_key:
            raise RuntimeError("OpenAI embedding service is not configured: missing API key")
        if not texts:
            return []

        payload: dict = {"model": self._model_name, "input": texts}
        if self._dimensions:
            payload["dimensions"] = self._dimensions

        response = self.client.post(
            f"{self._base_url}/embeddings",
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response.raise_for_status()
        data = response.json().get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise ValueError(f"Unexpected embeddings response: expected {len(texts)} vectors")

        ordered = sorted(data, key=lambda d: d.get("index", 0))
        return [list(map(float, d["embedding"])) for d in ordered]

    def is_available(self) -> bool:
        """Available when an API key is configured; no request is made."""
        return bool(self._api_key)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
