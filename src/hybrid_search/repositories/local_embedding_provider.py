"""Local sentence-transformers embedding provider.

Runs sentence-transformers models in-process. No API calls required, which
makes it the provider of choice for air-gapped installs.
"""

import logging
import time

import numpy as np
from sentence_transformers import SentenceTransformer

from hybrid_search.config import settings

logger = logging.getLogger(__name__)


class LocalEmbeddingProvider:
    """Local sentence-transformers implementation of EmbeddingProvider.

    This class satisfies the EmbeddingProvider protocol through structural
    typing - no explicit inheritance needed.

    The model is loaded lazily on first use.
    """

    # Most sentence-transformers models truncate at 512 tokens
    MAX_INPUT_CHARS = 512 * 4

    def __init__(self, model_name: str | None = None, batch_size: int = 32) -> None:
        """Initialize the local embedding provider.

        Args:
            model_name: Name of the sentence-transformers model.
                Defaults to settings.
            batch_size: Batch size for encode_batch.
        """
        self._model_name = model_name or settings.embedding.model
        self._batch_size = batch_size
        self._model: SentenceTransformer | None = None
        self._dimension: int | None = None

    @classmethod
    def create(cls, model_name: str | None = None) -> "LocalEmbeddingProvider":
        """Factory method to create LocalEmbeddingProvider with defaults."""
        return cls(model_name=model_name)

    @property
    def model(self) -> SentenceTransformer:
        """Lazy-load the embedding model."""
        if self._model is None:
            logger.info("Loading embedding model: %s", self._model_name)
            start_time = time.time()
            self._model = SentenceTransformer(self._model_name)
            logger.info("Model loaded in %.2fs", time.time() - start_time)
        return self._model

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension() or len(self.encode("test"))
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def max_input_chars(self) -> int:
        return self.MAX_INPUT_CHARS

    def encode(self, text: str) -> list[float]:
        embedding = self.model.encode(
            text,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        if isinstance(embedding, np.ndarray):
            if embedding.ndim == 1:
                return embedding.tolist()
            return embedding[0].tolist()
        return list(embedding)

    def encode_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self.model.encode(
            texts,
            batch_size=self._batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return np.asarray(embeddings).tolist()

    def is_available(self) -> bool:
        """True if the model can be loaded."""
        try:
            _ = self.model
            return True
        except (OSError, ValueError) as e:
            logger.warning("Embedding model %s unavailable: %s", self._model_name, e)
            return False
