"""Offline embedding provider based on feature hashing."""

import hashlib
import math
import re

from ..graph.models import EMBEDDING_DIMENSIONS
from .base import EmbeddingError, EmbeddingProvider

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings.

    Each lowercased token is hashed into one of the 1536 buckets and the
    vector is L2-normalized, so texts that differ only in case or whitespace
    embed identically. Suitable for local runs and tests; production
    deployments plug in a model-backed provider.
    """

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS):
        self.dimensions = dimensions

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall((text or "").lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]

    async def embed(self, text: str) -> list[float]:
        """Embed text.

        Raises:
            EmbeddingError: If text is empty
        """
        if not text or not text.strip():
            raise EmbeddingError("Task text cannot be empty")
        return self.embed_sync(text)


def cosine_similarity(first: list[float], second: list[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    dot = sum(a * b for a, b in zip(first, second))
    norm_first = math.sqrt(sum(a * a for a in first))
    norm_second = math.sqrt(sum(b * b for b in second))
    if norm_first == 0 or norm_second == 0:
        return 0.0
    return dot / (norm_first * norm_second)
