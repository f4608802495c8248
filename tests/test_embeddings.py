"""
Tests for the embedding client: model fallback, rate-limit retries, batching.

Run with: pytest tests/test_embeddings.py -v -s
"""
import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, NotFoundError, RateLimitError

from telecom_rag.embeddings import EmbeddingClient, EmbeddingModelNotFoundError

EMBEDDINGS_URL = "https://llm.test/v1/embeddings"


def status_error(cls, status: int):
    request = httpx.Request("POST", EMBEDDINGS_URL)
    response = httpx.Response(status, request=request)
    return cls(f"status {status}", response=response, body=None)


class FakeEmbeddingsAPI:
    """Stands in for client.embeddings; `failures` maps model -> list of errors to raise first."""

    def __init__(self, failures: dict[str, list[Exception]] | None = None):
        self.failures = failures or {}
        self.calls: list[tuple[str, list[str]]] = []

    async def create(self, model: str, input: list[str]):
        self.calls.append((model, list(input)))
        pending = self.failures.get(model)
        if pending:
            raise pending.pop(0)
        return SimpleNamespace(data=[SimpleNamespace(embedding=[float(len(t)), 1.0]) for t in input])


def make_client(api: FakeEmbeddingsAPI, **kwargs) -> EmbeddingClient:
    options = {"model": "primary-model", "fallback_model": "fallback-model", "batch_size": 2}
    options.update(kwargs)
    return EmbeddingClient(client=SimpleNamespace(embeddings=api), **options)


def test_model_not_found_falls_back_once():
    """
    Verify:
    1. NotFoundError on the primary model triggers one call on the fallback model
    2. The fallback result is returned
    """
    api = FakeEmbeddingsAPI({"primary-model": [status_error(NotFoundError, 404)]})

    vector = asyncio.run(make_client(api).embed("fibre"))

    assert vector == [5.0, 1.0]
    assert [model for model, _ in api.calls] == ["primary-model", "fallback-model"]
    print("✓ Fallback model used after model-not-found")


def test_fallback_failure_is_not_retried_again():
    api = FakeEmbeddingsAPI({
        "primary-model": [status_error(NotFoundError, 404)],
        "fallback-model": [status_error(NotFoundError, 404)],
    })

    with pytest.raises(EmbeddingModelNotFoundError) as exc_info:
        asyncio.run(make_client(api).embed("fibre"))

    assert exc_info.value.model == "fallback-model"
    assert len(api.calls) == 2


def test_fallback_same_as_primary_reraises():
    api = FakeEmbeddingsAPI({"primary-model": [status_error(NotFoundError, 404)]})
    client = make_client(api, fallback_model="primary-model")

    with pytest.raises(EmbeddingModelNotFoundError) as exc_info:
        asyncio.run(client.embed("fibre"))

    assert exc_info.value.model == "primary-model"
    assert len(api.calls) == 1


def test_other_errors_propagate_without_fallback():
    request = httpx.Request("POST", EMBEDDINGS_URL)
    api = FakeEmbeddingsAPI({"primary-model": [APIConnectionError(request=request)]})

    with pytest.raises(APIConnectionError):
        asyncio.run(make_client(api).embed("fibre"))

    assert [model for model, _ in api.calls] == ["primary-model"]


def test_rate_limit_retries_with_backoff(monkeypatch):
    waits: list[float] = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr("telecom_rag.embeddings.asyncio.sleep", fake_sleep)
    api = FakeEmbeddingsAPI({"primary-model": [status_error(RateLimitError, 429), status_error(RateLimitError, 429)]})

    vector = asyncio.run(make_client(api).embed("abc"))

    assert vector == [3.0, 1.0]
    assert waits == [2, 4]
    assert len(api.calls) == 3


def test_rate_limit_gives_up_after_max_retries(monkeypatch):
    async def fake_sleep(seconds):
        return None

    monkeypatch.setattr("telecom_rag.embeddings.asyncio.sleep", fake_sleep)
    api = FakeEmbeddingsAPI({"primary-model": [status_error(RateLimitError, 429) for _ in range(5)]})

    with pytest.raises(RateLimitError):
        asyncio.run(make_client(api, max_retries=3).embed("abc"))

    assert len(api.calls) == 3
    # no fallback for rate limits
    assert all(model == "primary-model" for model, _ in api.calls)


def test_embed_batch_sequential_batches_keep_order():
    api = FakeEmbeddingsAPI()
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]

    vectors = asyncio.run(make_client(api, batch_size=2).embed_batch(texts))

    assert [v[0] for v in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert [batch for _, batch in api.calls] == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]
    assert asyncio.run(make_client(api).embed_batch([])) == []
