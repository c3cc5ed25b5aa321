"""Local sentence-transformers embeddings (installed with the ``local`` extra)."""

import logging
from typing import Any, List, Optional

from ..config import EmbeddingConfig
from ..errors import EmbeddingError
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder(EmbeddingProvider):
    """Runs a sentence-transformers model in-process.

    The model is loaded on first use; construction is cheap.
    """

    def __init__(self, config: EmbeddingConfig, console=None):
        super().__init__(console)
        self.config = config
        self._model: Optional[Any] = None

    @property
    def model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model {self.config.model}")
            try:
                self._model = SentenceTransformer(self.config.model)
            except OSError as e:
                raise EmbeddingError(
                    f"Could not load model {self.config.model}: {e}"
                ) from e
        return self._model

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        return self.get_embeddings_batch([text], model)[0]

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        if not texts:
            return []
        try:
            vectors = self.model.encode(
                texts, convert_to_numpy=True, normalize_embeddings=True
            )
        except (RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e
        return [vector.tolist() for vector in vectors]

    def get_dimensions(self) -> int:
        return self.config.dimension

    def get_provider_name(self) -> str:
        return "sentence-transformers"

    def get_current_model(self) -> str:
        return self.config.model
