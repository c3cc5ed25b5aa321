"""Services: embedding providers and the code search surface."""

from .embedding_factory import EmbeddingProviderFactory
from .embedding_provider import EmbeddingProvider
from .hash_embedder import HashingEmbedder

__all__ = ["EmbeddingProvider", "EmbeddingProviderFactory", "HashingEmbedder"]
