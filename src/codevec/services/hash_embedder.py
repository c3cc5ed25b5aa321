"""Deterministic feature-hashing embeddings.

Needs no model download and no network, which makes it the provider for
offline use and for tests. Texts sharing identifiers and words land close
together in cosine space; it is not a semantic model.
"""

import hashlib
import re
from typing import List, Optional

import numpy as np

from .embedding_provider import EmbeddingProvider

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def tokenize(text: str) -> List[str]:
    """Lowercased identifiers plus their camelCase and snake_case parts."""
    tokens: List[str] = []
    for word in _WORD_RE.findall(text):
        lowered = word.lower()
        tokens.append(lowered)
        parts = [p.lower() for piece in word.split("_") for p in _CAMEL_RE.findall(piece)]
        if len(parts) > 1 or (parts and parts[0] != lowered):
            tokens.extend(parts)
    return tokens


class HashingEmbedder(EmbeddingProvider):
    """Signed feature hashing of code tokens into a fixed number of buckets."""

    def __init__(self, dimension: int = 384, console=None):
        super().__init__(console)
        if dimension <= 0:
            raise ValueError(f"Dimension must be positive, got {dimension}")
        self.dimension = dimension

    def _bucket(self, token: str):
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "little")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self.dimension, sign

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in tokenize(text):
            index, sign = self._bucket(token)
            vector[index] += sign

        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            # Text without tokens (or whose hashes cancelled) still needs a direction
            vector[0] = 1.0
            return vector
        return vector / norm

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        return self.embed(text).tolist()

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        return [self.embed(text).tolist() for text in texts]

    def get_dimensions(self) -> int:
        return self.dimension

    def get_provider_name(self) -> str:
        return "hash"

    def get_current_model(self) -> str:
        return f"feature-hash-{self.dimension}"
