"""Unit tests for the offline hashing embedder and the provider factory."""

import numpy as np
import pytest

from codevec.config import Config, EmbeddingConfig
from codevec.services.embedding_factory import EmbeddingProviderFactory
from codevec.services.hash_embedder import HashingEmbedder, tokenize
from codevec.services.local_embedder import SentenceTransformerEmbedder
from codevec.services.voyage_ai import VoyageAIClient


class TestTokenize:
    def test_splits_identifiers(self):
        tokens = tokenize("parseConfig(file_path)")

        assert "parseconfig" in tokens
        assert {"parse", "config", "file", "path", "file_path"} <= set(tokens)

    def test_plain_words_are_not_duplicated(self):
        assert tokenize("open the door") == ["open", "the", "door"]


class TestHashingEmbedder:
    def test_is_deterministic(self):
        first = HashingEmbedder(64).get_embedding("def connect(addr)")
        second = HashingEmbedder(64).get_embedding("def connect(addr)")

        assert first == second

    def test_vectors_are_unit_length(self):
        vector = np.array(HashingEmbedder(64).get_embedding("fn open_stream() {}"))

        assert vector.shape == (64,)
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_empty_text_still_has_a_direction(self):
        vector = np.array(HashingEmbedder(32).get_embedding(""))

        assert np.any(vector)
        assert np.all(np.isfinite(vector))

    def test_shared_tokens_are_closer(self):
        embedder = HashingEmbedder(256)
        query = np.array(embedder.get_embedding("open tcp connection"))
        related = np.array(embedder.get_embedding("def open_tcp_connection(host): pass"))
        unrelated = np.array(embedder.get_embedding("class MatrixInverse: determinant"))

        assert query @ related > query @ unrelated

    def test_batch_matches_single(self):
        embedder = HashingEmbedder(64)
        texts = ["alpha beta", "gamma"]

        assert embedder.get_embeddings_batch(texts) == [
            embedder.get_embedding(t) for t in texts
        ]

    def test_model_info(self):
        info = HashingEmbedder(48).get_model_info()

        assert info == {"name": "feature-hash-48", "provider": "hash", "dimensions": 48}

    def test_rejects_non_positive_dimension(self):
        with pytest.raises(ValueError):
            HashingEmbedder(0)


class TestEmbeddingProviderFactory:
    def test_creates_hash_provider(self):
        config = Config(embedding=EmbeddingConfig(provider="hash", dimension=96))

        provider = EmbeddingProviderFactory.create(config)

        assert isinstance(provider, HashingEmbedder)
        assert provider.get_dimensions() == 96

    def test_creates_local_provider_without_loading_model(self):
        config = Config(embedding=EmbeddingConfig(provider="sentence-transformers", dimension=384))

        provider = EmbeddingProviderFactory.create(config)

        assert isinstance(provider, SentenceTransformerEmbedder)
        assert provider._model is None

    def test_creates_voyage_provider(self, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "test-key")
        config = Config(embedding=EmbeddingConfig(provider="voyage-ai", dimension=1024))

        assert isinstance(EmbeddingProviderFactory.create(config), VoyageAIClient)

    def test_dimension_mismatch_is_rejected(self, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "test-key")
        config = Config(embedding=EmbeddingConfig(provider="voyage-ai", dimension=384))

        with pytest.raises(ValueError, match="embedding.dimension"):
            EmbeddingProviderFactory.create(config)

    def test_provider_listing(self):
        providers = EmbeddingProviderFactory.get_available_providers()

        assert set(providers) == set(EmbeddingProviderFactory.get_provider_info())
