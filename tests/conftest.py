"""
Shared fixtures and fakes.

Settings are instantiated at import time, so provider environment variables
are set here before any telecom_rag module is imported.
"""
import hashlib
import json
import os

os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("QDRANT_URL", "http://localhost:6333")

import pytest

from telecom_rag.query_cache import SimilarityCache
from telecom_rag.query_log import QueryLogStore
from telecom_rag.rag_service import RAGPipeline
from telecom_rag.reranker import RerankerConfig
from telecom_rag.retriever import VectorRetriever
from telecom_rag.vector_store import VectorMatch


def text_vector(text: str, dim: int = 32) -> list[float]:
    """Deterministic pseudo-random vector; different texts are far apart."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(digest[i % len(digest)] - 127.5) / 127.5 for i in range(dim)]


def make_match(index: int, file_name: str, text: str, score: float) -> VectorMatch:
    return VectorMatch(
        id=f"point-{index}",
        score=score,
        metadata={"fileName": file_name, "lineNumber": index + 1, "text": text},
    )


class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.calls: list[str] = []
        self.fail = fail

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding provider down")
        return text_vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class FakeStore:
    def __init__(self, matches: list[VectorMatch] | None = None, fail: bool = False):
        self.matches = matches or []
        self.fail = fail
        self.search_calls: list[int] = []
        self.upserts: dict[str, dict] = {}
        self.collection_dimension: int | None = None
        self.recreated = False

    async def search(self, vector, k, include_metadata=True):
        self.search_calls.append(k)
        if self.fail:
            raise ConnectionError("vector index unreachable")
        return self.matches[:k]

    async def ensure_collection(self, dimension: int = 1536) -> None:
        if self.collection_dimension is None:
            self.collection_dimension = dimension

    async def recreate_collection(self, dimension: int) -> None:
        self.recreated = True
        self.upserts.clear()
        self.collection_dimension = dimension

    async def upsert(self, ids, vectors, payloads) -> int:
        for point_id, payload in zip(ids, payloads):
            self.upserts[point_id] = payload
        return len(ids)


class FakeChat:
    """
    Chat model stand-in. Refinement requests (ghost prompt) get
    `refinement`; answer requests get `answer` or the streamed `chunks`.
    """

    def __init__(
        self,
        refinement: dict | str | None = None,
        answer: str = "Answer from context (doc.txt, line 1)",
        chunks: list[str] | None = None,
        stream_error: Exception | None = None,
        answer_error: Exception | None = None,
    ):
        self.refinement = refinement
        self.answer = answer
        self.chunks = chunks if chunks is not None else ["Answer ", "from ", "context"]
        self.stream_error = stream_error
        self.answer_error = answer_error
        self.refine_calls = 0
        self.answer_calls: list[list[dict]] = []

    @staticmethod
    def _is_refinement(messages) -> bool:
        return "query-refinement" in messages[0]["content"]

    async def complete_chat(self, messages, temperature=0.2, model=None) -> str:
        if self._is_refinement(messages):
            self.refine_calls += 1
            if self.refinement is None:
                raise RuntimeError("refiner unavailable")
            if isinstance(self.refinement, str):
                return self.refinement
            return json.dumps(self.refinement)

        self.answer_calls.append(messages)
        if self.answer_error:
            raise self.answer_error
        return self.answer

    async def stream_chat(self, messages, temperature=0.2, model=None):
        self.answer_calls.append(messages)
        for chunk in self.chunks:
            yield chunk
        if self.stream_error:
            raise self.stream_error


@pytest.fixture
def make_pipeline():
    def _make(
        matches=None,
        chat: FakeChat | None = None,
        store: FakeStore | None = None,
        embedder: FakeEmbedder | None = None,
        cache: SimilarityCache | None = None,
    ) -> RAGPipeline:
        store = store or FakeStore(matches)
        return RAGPipeline(
            embedder=embedder or FakeEmbedder(),
            retriever=VectorRetriever(store, initial_count=20),
            chat=chat or FakeChat(),
            cache=cache or SimilarityCache(threshold=0.95, capacity=100),
            logs=QueryLogStore(capacity=100),
            reranker_config=RerankerConfig(),
            warm_delay_seconds=0,
        )

    return _make
