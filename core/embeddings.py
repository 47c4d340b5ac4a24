"""Query embedding generation.

Contexts are embedded on the content-management side; this module only embeds
incoming query text so it can be compared against the stored vectors.

- ``openai`` provider: POSTs to the embeddings endpoint of an OpenAI-compatible
  API over httpx.
- otherwise, or when the provider call fails: a deterministic character-hash
  vector. It carries very little meaning but keeps the vector signal
  well-defined (and testable) without an external service.

Vectors are always resized to ``EMBEDDING_DIM`` to match the ``contexts``
column.
"""

import logging
import math
from functools import lru_cache
from typing import List, Optional

import httpx

from core.config import settings

logger = logging.getLogger(__name__)

HASH_BUCKETS = 384


def resize_vector(vector: List[float], dimension: int) -> List[float]:
    """Truncate or zero-pad a vector to ``dimension`` entries."""
    if len(vector) >= dimension:
        return list(vector[:dimension])
    return list(vector) + [0.0] * (dimension - len(vector))


def hash_embedding(text: str, dimension: int) -> List[float]:
    """Deterministic bag-of-characters embedding (L2 normalized)."""
    buckets = [0.0] * HASH_BUCKETS
    for char in text:
        code = ord(char)
        buckets[code % HASH_BUCKETS] += (code % 13) - 6
    norm = math.sqrt(sum(v * v for v in buckets))
    if norm > 0:
        buckets = [v / norm for v in buckets]
    return resize_vector(buckets, dimension)


class EmbeddingError(Exception):
    """Raised when the embedding provider returns an unusable response."""

    pass


class EmbeddingClient:
    """Embeds query text with the configured provider."""

    def __init__(
        self,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.provider = (provider or settings.EMBEDDING_PROVIDER).lower()
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.api_base = (api_base or settings.OPENAI_API_BASE).rstrip("/")
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        self.dimension = dimension or settings.EMBEDDING_DIM
        self.timeout = timeout or settings.EMBEDDING_TIMEOUT

    @property
    def uses_provider(self) -> bool:
        return self.provider == "openai" and bool(self.api_key)

    async def embed(self, text: str) -> List[float]:
        """Embed ``text``, falling back to the hash embedding on provider failure."""
        if not self.uses_provider:
            return hash_embedding(text, self.dimension)

        try:
            return await self._embed_remote(text)
        except (httpx.HTTPError, EmbeddingError) as e:
            logger.warning(f"Embedding provider failed, using hash embedding: {e}")
            return hash_embedding(text, self.dimension)

    async def _embed_remote(self, text: str) -> List[float]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self.model, "input": text}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.api_base}/embeddings", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e
        return resize_vector([float(v) for v in vector], self.dimension)


@lru_cache(maxsize=1)
def get_embedding_client() -> EmbeddingClient:
    """Shared embedding client built from settings."""
    return EmbeddingClient()
