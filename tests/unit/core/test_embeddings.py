"""Tests for query embedding generation."""

import math
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from core.embeddings import EmbeddingClient, hash_embedding, resize_vector


def _mock_async_client(response=None, error=None):
    """Patchable stand-in for httpx.AsyncClient used as an async context manager."""
    client = MagicMock()
    if error is not None:
        client.post = AsyncMock(side_effect=error)
    else:
        client.post = AsyncMock(return_value=response)
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=client)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, client


def _json_response(payload):
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value=payload)
    return response


class TestHashEmbedding:
    def test_is_deterministic(self):
        assert hash_embedding("pizza near me", 64) == hash_embedding("pizza near me", 64)

    def test_differs_for_different_text(self):
        assert hash_embedding("pizza", 384) != hash_embedding("sushi", 384)

    def test_sized_and_normalized(self):
        vector = hash_embedding("coffee shop", 1024)
        assert len(vector) == 1024
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)

    def test_empty_text_is_zero_vector(self):
        assert hash_embedding("", 8) == [0.0] * 8


class TestResizeVector:
    def test_truncates(self):
        assert resize_vector([1.0, 2.0, 3.0], 2) == [1.0, 2.0]

    def test_pads(self):
        assert resize_vector([1.0], 3) == [1.0, 0.0, 0.0]


class TestEmbeddingClient:
    """EmbeddingClient.embed."""

    @pytest.mark.asyncio
    async def test_no_provider_never_calls_http(self):
        client = EmbeddingClient(provider="none", api_key="sk-test", dimension=16)
        factory, _ = _mock_async_client()

        with patch("core.embeddings.httpx.AsyncClient", factory):
            vector = await client.embed("pizza")

        factory.assert_not_called()
        assert vector == hash_embedding("pizza", 16)

    @pytest.mark.asyncio
    async def test_openai_without_key_uses_hash(self):
        client = EmbeddingClient(provider="openai", api_key="", dimension=16)
        assert client.uses_provider is False
        assert await client.embed("pizza") == hash_embedding("pizza", 16)

    @pytest.mark.asyncio
    async def test_provider_vector_is_resized(self):
        client = EmbeddingClient(
            provider="openai", api_key="sk-test", api_base="https://api.example/v1/", model="m", dimension=4
        )
        factory, http_client = _mock_async_client(_json_response({"data": [{"embedding": [0.1, 0.2]}]}))

        with patch("core.embeddings.httpx.AsyncClient", factory):
            vector = await client.embed("pizza")

        assert vector == [0.1, 0.2, 0.0, 0.0]
        args, kwargs = http_client.post.call_args
        assert args[0] == "https://api.example/v1/embeddings"
        assert kwargs["json"] == {"model": "m", "input": "pizza"}
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back_to_hash(self, caplog):
        client = EmbeddingClient(provider="openai", api_key="sk-test", dimension=16)
        factory, _ = _mock_async_client(error=httpx.ConnectError("connection refused"))

        with patch("core.embeddings.httpx.AsyncClient", factory):
            vector = await client.embed("pizza")

        assert vector == hash_embedding("pizza", 16)
        assert "Embedding provider failed" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back_to_hash(self):
        client = EmbeddingClient(provider="openai", api_key="sk-test", dimension=16)
        factory, _ = _mock_async_client(_json_response({"data": []}))

        with patch("core.embeddings.httpx.AsyncClient", factory):
            vector = await client.embed("pizza")

        assert vector == hash_embedding("pizza", 16)
