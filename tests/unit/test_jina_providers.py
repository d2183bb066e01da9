"""Unit tests for the Jina embedding and rerank adapters over a mocked transport."""

from __future__ import annotations

import json

import httpx
import pytest

from course_rag.config.settings import Settings
from course_rag.providers.embedding.jina_embedding_client import JinaEmbeddingClient
from course_rag.providers.reranker.jina_reranker import JinaReranker
from course_rag.utils.errors import EmbeddingServiceError, RerankServiceError


def _settings(**overrides) -> Settings:
    defaults = {
        "jina_api_key": "jina-test",
        "jina_base_url": "https://jina.test/v1/",
        "vector_dimension": 4,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class _Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status: int = 200, body=None, text: str | None = None) -> None:
        self.status = status
        self.body = body
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


# ======================================================================
# Embeddings
# ======================================================================


class TestJinaEmbeddingClient:
    @pytest.mark.asyncio
    async def test_embed_orders_by_index(self) -> None:
        recorder = _Recorder(
            body={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0, 0.0, 0.0]},
                    {"index": 0, "embedding": [1.0, 0.0, 0.0, 0.0]},
                ],
                "usage": {"total_tokens": 7},
            }
        )
        client = JinaEmbeddingClient(_settings(), http_client=_http(recorder))

        vectors = await client.embed(["first", "second"])

        assert vectors == [[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]]
        request = recorder.requests[0]
        assert str(request.url) == "https://jina.test/v1/embeddings"
        assert request.headers["Authorization"] == "Bearer jina-test"
        assert recorder.last_json == {
            "model": "jina-embeddings-v3",
            "input": ["first", "second"],
            "task": "retrieval.passage",
            "dimensions": 4,
            "normalized": True,
        }

    @pytest.mark.asyncio
    async def test_queries_use_query_task(self) -> None:
        recorder = _Recorder(body={"data": [{"index": 0, "embedding": [1.0, 0.0, 0.0, 0.0]}]})
        client = JinaEmbeddingClient(_settings(), http_client=_http(recorder))

        await client.embed(["what is soil?"], is_query=True)

        assert recorder.last_json["task"] == "retrieval.query"

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self) -> None:
        recorder = _Recorder(body={})
        client = JinaEmbeddingClient(_settings(), http_client=_http(recorder))

        assert await client.embed([]) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "retryable"),
        [(503, True), (500, True), (429, True), (400, False), (401, False)],
    )
    async def test_http_errors_are_classified(self, status: int, retryable: bool) -> None:
        client = JinaEmbeddingClient(
            _settings(), http_client=_http(_Recorder(status=status, text="nope"))
        )

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await client.embed(["text"])

        assert exc_info.value.retryable is retryable
        assert f"HTTP {status}" in str(exc_info.value)
        assert exc_info.value.provider_name == "jina_embedding"

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = JinaEmbeddingClient(_settings(), http_client=_http(handler))

        with pytest.raises(EmbeddingServiceError, match="timed out") as exc_info:
            await client.embed(["text"])
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_retryable(self) -> None:
        client = JinaEmbeddingClient(
            _settings(), http_client=_http(_Recorder(text="<html>oops</html>"))
        )

        with pytest.raises(EmbeddingServiceError, match="not valid JSON") as exc_info:
            await client.embed(["text"])
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_wrong_count_is_an_error(self) -> None:
        recorder = _Recorder(body={"data": [{"index": 0, "embedding": [1.0, 0.0, 0.0, 0.0]}]})
        client = JinaEmbeddingClient(_settings(), http_client=_http(recorder))

        with pytest.raises(EmbeddingServiceError, match="Expected 2 embeddings, got 1"):
            await client.embed(["a", "b"])

    def test_metadata(self) -> None:
        client = JinaEmbeddingClient(_settings(), http_client=_http(_Recorder()))
        assert client.get_dimension() == 4
        assert client.get_model_name() == "jina-embeddings-v3"
        assert client.get_provider_name() == "jina_embedding"
        assert client.is_available()

    def test_unavailable_without_key(self) -> None:
        client = JinaEmbeddingClient(_settings(jina_api_key=""), http_client=_http(_Recorder()))
        assert not client.is_available()

    @pytest.mark.asyncio
    async def test_check_health(self) -> None:
        recorder = _Recorder(body={"data": [{"index": 0, "embedding": [0.5, 0.5, 0.5, 0.5]}]})
        client = JinaEmbeddingClient(_settings(), http_client=_http(recorder))
        assert await client.check_health()

        failing = JinaEmbeddingClient(_settings(), http_client=_http(_Recorder(status=503, text="")))
        assert not await failing.check_health()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        http = _http(_Recorder())
        client = JinaEmbeddingClient(_settings(), http_client=http)

        await client.close()

        assert not http.is_closed
        await http.aclose()


# ======================================================================
# Reranker
# ======================================================================


class TestJinaReranker:
    @pytest.mark.asyncio
    async def test_rerank_sorts_by_relevance(self) -> None:
        recorder = _Recorder(
            body={
                "results": [
                    {"index": 0, "relevance_score": 0.2},
                    {"index": 2, "relevance_score": 0.9},
                    {"index": 1, "relevance_score": 0.5},
                ]
            }
        )
        reranker = JinaReranker(_settings(), http_client=_http(recorder))

        scored = await reranker.rerank("soil", ["a", "b", "c"], top_n=10)

        assert scored == [(2, 0.9), (1, 0.5), (0, 0.2)]
        assert str(recorder.requests[0].url) == "https://jina.test/v1/rerank"
        assert recorder.last_json == {
            "model": "jina-reranker-v2-base-multilingual",
            "query": "soil",
            "documents": ["a", "b", "c"],
            "top_n": 3,
            "return_documents": False,
        }

    @pytest.mark.asyncio
    async def test_empty_texts_make_no_request(self) -> None:
        recorder = _Recorder(body={})
        reranker = JinaReranker(_settings(), http_client=_http(recorder))

        assert await reranker.rerank("soil", []) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "item",
        [
            {"index": 7, "relevance_score": 0.5},
            {"index": "0", "relevance_score": 0.5},
            {"index": 0},
        ],
    )
    async def test_malformed_results_rejected(self, item: dict) -> None:
        reranker = JinaReranker(_settings(), http_client=_http(_Recorder(body={"results": [item]})))

        with pytest.raises(RerankServiceError, match="Malformed") as exc_info:
            await reranker.rerank("soil", ["a", "b"])
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_results_list(self) -> None:
        reranker = JinaReranker(_settings(), http_client=_http(_Recorder(body={"data": []})))
        with pytest.raises(RerankServiceError, match="no results"):
            await reranker.rerank("soil", ["a"])

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self) -> None:
        reranker = JinaReranker(_settings(), http_client=_http(_Recorder(status=502, text="bad gateway")))

        with pytest.raises(RerankServiceError) as exc_info:
            await reranker.rerank("soil", ["a"])
        assert exc_info.value.retryable
        assert exc_info.value.provider_name == "jina_reranker"
