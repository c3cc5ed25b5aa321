"""Factory for creating embedding providers based on configuration."""

from typing import Any, Dict, List, Optional

from rich.console import Console

from ..config import Config
from .embedding_provider import EmbeddingProvider
from .hash_embedder import HashingEmbedder
from .local_embedder import SentenceTransformerEmbedder
from .voyage_ai import VoyageAIClient


class EmbeddingProviderFactory:
    """Factory for creating embedding providers."""

    @staticmethod
    def create(config: Config, console: Optional[Console] = None) -> EmbeddingProvider:
        """Create an embedding provider based on configuration.

        Args:
            config: Main configuration object
            console: Optional console for output

        Returns:
            Configured embedding provider

        Raises:
            ValueError: If the provider is unknown or its dimension differs from
                ``config.embedding.dimension``
        """
        provider_name = config.embedding.provider

        provider: EmbeddingProvider
        if provider_name == "hash":
            provider = HashingEmbedder(config.embedding.dimension, console)
        elif provider_name == "voyage-ai":
            provider = VoyageAIClient(config.voyage_ai, console)
        elif provider_name == "sentence-transformers":
            provider = SentenceTransformerEmbedder(config.embedding, console)
        else:
            raise ValueError(f"Unsupported embedding provider: {provider_name}")

        if provider.get_dimensions() != config.embedding.dimension:
            raise ValueError(
                f"Embedding provider '{provider_name}' produces "
                f"{provider.get_dimensions()}-dimensional vectors but "
                f"embedding.dimension is {config.embedding.dimension}"
            )
        return provider

    @staticmethod
    def get_available_providers() -> List[str]:
        return ["sentence-transformers", "voyage-ai", "hash"]

    @staticmethod
    def get_provider_info() -> Dict[str, Dict[str, Any]]:
        """Get information about available providers."""
        return {
            "sentence-transformers": {
                "name": "Sentence Transformers",
                "description": "Local model, runs in-process (pip install codevec[local])",
                "type": "local",
                "requires_api_key": False,
                "default_model": "sentence-transformers/all-MiniLM-L6-v2",
            },
            "voyage-ai": {
                "name": "VoyageAI",
                "description": "High-quality embeddings via VoyageAI API",
                "type": "cloud",
                "requires_api_key": True,
                "api_key_env": "VOYAGE_API_KEY",
                "default_model": "voyage-code-3",
            },
            "hash": {
                "name": "Feature hashing",
                "description": "Deterministic token hashing; offline, no model",
                "type": "local",
                "requires_api_key": False,
                "default_model": "feature-hash",
            },
        }
