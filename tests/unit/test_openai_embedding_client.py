"""Unit tests for the OpenAI-compatible embedding adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from course_rag.config.settings import Settings
from course_rag.providers.embedding.openai_embedding_client import OpenAIEmbeddingClient
from course_rag.utils.errors import EmbeddingServiceError

_REQUEST = httpx.Request("POST", "https://api.openai.test/v1/embeddings")


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "text-embedding-3-small",
        "vector_dimension": 4,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(*vectors: list[float], order: list[int] | None = None) -> MagicMock:
    order = order if order is not None else list(range(len(vectors)))
    response = MagicMock()
    response.data = [MagicMock(index=i, embedding=vectors[i]) for i in order]
    response.usage = MagicMock(total_tokens=12)
    return response


def _mock_client(**create_kwargs) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.embeddings.create = AsyncMock(**create_kwargs)
    return mock_client


class TestOpenAIEmbeddingClient:
    @pytest.mark.asyncio
    async def test_embed_success(self) -> None:
        mock_client = _mock_client(
            return_value=_response([1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0], order=[1, 0])
        )
        client = OpenAIEmbeddingClient(_settings(), client=mock_client)

        vectors = await client.embed(["first", "second"])

        assert vectors == [[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]]
        mock_client.embeddings.create.assert_awaited_once_with(
            input=["first", "second"], model="text-embedding-3-small", dimensions=4
        )

    @pytest.mark.asyncio
    async def test_native_dimension_model_sends_no_dimensions(self) -> None:
        mock_client = _mock_client(return_value=_response([0.1] * 768))
        client = OpenAIEmbeddingClient(
            _settings(openai_embedding_model="BAAI/bge-base-en-v1.5"), client=mock_client
        )

        await client.embed(["hello"])

        assert client.get_dimension() == 768
        assert "dimensions" not in mock_client.embeddings.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        mock_client = _mock_client(return_value=_response())
        client = OpenAIEmbeddingClient(_settings(), client=mock_client)

        assert await client.embed([]) == []
        mock_client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (
                openai.RateLimitError(
                    message="slow down", response=httpx.Response(429, request=_REQUEST), body=None
                ),
                True,
            ),
            (
                openai.InternalServerError(
                    message="boom", response=httpx.Response(500, request=_REQUEST), body=None
                ),
                True,
            ),
            (
                openai.BadRequestError(
                    message="bad input", response=httpx.Response(400, request=_REQUEST), body=None
                ),
                False,
            ),
            (openai.APIConnectionError(request=_REQUEST), True),
        ],
    )
    async def test_errors_are_classified(self, error: Exception, retryable: bool) -> None:
        client = OpenAIEmbeddingClient(_settings(), client=_mock_client(side_effect=error))

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await client.embed(["text"])

        assert exc_info.value.retryable is retryable
        assert exc_info.value.provider_name == "openai_embedding"

    def test_compatible_base_url_changes_label(self) -> None:
        client = OpenAIEmbeddingClient(
            _settings(openai_base_url="http://localhost:11434/v1"), client=_mock_client()
        )
        assert client.get_provider_name() == "openai-compatible_embedding"

    def test_is_available_without_key(self) -> None:
        client = OpenAIEmbeddingClient(_settings(openai_api_key=""), client=_mock_client())
        assert client.is_available() is False

    def test_default_model_when_blank(self) -> None:
        client = OpenAIEmbeddingClient(_settings(openai_embedding_model=""), client=_mock_client())
        assert client.get_model_name() == "text-embedding-3-small"
        assert client.get_dimension() == 4

    @pytest.mark.asyncio
    async def test_close_closes_client(self) -> None:
        mock_client = _mock_client()
        await OpenAIEmbeddingClient(_settings(), client=mock_client).close()
        mock_client.close.assert_awaited_once()
