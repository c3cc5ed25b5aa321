"""Abstract base class for embedding providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Every provider returns vectors of one fixed dimension, which must equal the
    dimension of the vector store it feeds.
    """

    def __init__(self, console=None):
        self.console = console

    @abstractmethod
    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed
            model: Optional model override

        Returns:
            List of floats representing the embedding vector

        Raises:
            EmbeddingError: If the provider fails
        """
        pass

    @abstractmethod
    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        """Generate embeddings for multiple texts in batch.

        Args:
            texts: List of texts to embed
            model: Optional model override

        Returns:
            List of embedding vectors (one per input text, same order)

        Raises:
            EmbeddingError: If the provider fails
        """
        pass

    @abstractmethod
    def get_dimensions(self) -> int:
        """Dimension of every vector this provider returns."""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of this embedding provider.

        Returns:
            Provider name (e.g., "voyage-ai", "hash")
        """
        pass

    @abstractmethod
    def get_current_model(self) -> str:
        """Get the current active model name."""
        pass

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        return {
            "name": self.get_current_model(),
            "provider": self.get_provider_name(),
            "dimensions": self.get_dimensions(),
        }

    def close(self) -> None:
        """Release any resources held by the provider."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
