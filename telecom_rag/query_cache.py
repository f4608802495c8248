"""
Similarity cache for retrieval results.

Answers "has an equivalent question already been resolved?": a lookup returns
the single closest cached query whose embedding has cosine similarity
>= threshold with the new one. Only retrieval results are reused; answers are
always generated fresh.

The cache is bounded: when capacity is reached the least-recently-used entry
is evicted (a hit refreshes recency). Nearest-neighbour search is delegated to
an EmbeddingIndex so the linear scan can be swapped for an ANN index.
"""
import asyncio
import json
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import numpy as np

from telecom_rag.logging_config import get_logger
from telecom_rag.reranker import RankedDocument, RerankerConfig, rerank_documents

logger = get_logger(__name__)


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 (never raises) when lengths differ or either vector is zero.
    """
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    if vec_a.shape != vec_b.shape or vec_a.size == 0:
        return 0.0
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


# =============================================================================
# Nearest-neighbour index
# =============================================================================

class EmbeddingIndex(Protocol):
    def add(self, key: str, embedding: list[float]) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def nearest(self, embedding: list[float], threshold: float) -> tuple[str, float] | None:
        """Best (key, similarity) with similarity >= threshold, or None."""
        ...

    def clear(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class LinearScanIndex:
    """Exact nearest neighbour by scanning every stored vector."""

    def __init__(self):
        self._vectors: dict[str, np.ndarray] = {}

    def add(self, key: str, embedding: list[float]) -> None:
        self._vectors[key] = np.asarray(embedding, dtype=float)

    def remove(self, key: str) -> None:
        self._vectors.pop(key, None)

    def nearest(self, embedding: list[float], threshold: float) -> tuple[str, float] | None:
        query = np.asarray(embedding, dtype=float)
        best: tuple[str, float] | None = None
        for key, vector in self._vectors.items():
            similarity = cosine_similarity(query, vector)
            if similarity >= threshold and (best is None or similarity > best[1]):
                best = (key, similarity)
        return best

    def clear(self) -> None:
        self._vectors.clear()

    def __len__(self) -> int:
        return len(self._vectors)


# =============================================================================
# Cache
# =============================================================================

@dataclass(frozen=True)
class CachedQuery:
    id: str
    question: str
    embedding: list[float]
    retrieval_results: list[RankedDocument]
    timestamp: int  # epoch ms


@dataclass
class CacheStats:
    total_questions: int = 0
    cached_questions: int = 0
    hit_count: int = 0
    miss_count: int = 0
    evictions: int = 0
    last_warm_time: int | None = None  # epoch ms

    @property
    def hit_rate(self) -> float:
        lookups = self.hit_count + self.miss_count
        return self.hit_count / lookups if lookups else 0.0


@dataclass
class WarmResult:
    success: bool
    processed: int
    errors: list[str] = field(default_factory=list)


def new_cache_id() -> str:
    return f"q_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class SimilarityCache:
    def __init__(
        self,
        threshold: float = 0.95,
        capacity: int = 1000,
        index: EmbeddingIndex | None = None,
    ):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.threshold = threshold
        self.capacity = capacity
        self.index = index if index is not None else LinearScanIndex()
        self._entries: OrderedDict[str, CachedQuery] = OrderedDict()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    async def check_cache(self, embedding: list[float]) -> CachedQuery | None:
        """Return the closest cached query above the similarity threshold, or None."""
        best = self.index.nearest(embedding, self.threshold)
        if best is not None:
            key, similarity = best
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                self.stats.hit_count += 1
                logger.info(f"cache hit | similarity={similarity:.4f} | question={cached.question!r}")
                return cached

        self.stats.miss_count += 1
        return None

    def contains(self, embedding: list[float]) -> bool:
        """Whether a lookup would hit, without touching hit/miss stats or recency."""
        best = self.index.nearest(embedding, self.threshold)
        return best is not None and best[0] in self._entries

    def add_to_cache(
        self,
        question: str,
        embedding: list[float],
        results: list[RankedDocument],
    ) -> CachedQuery:
        """Append a new entry; near-duplicates are not replaced."""
        while len(self._entries) >= self.capacity:
            self._evict_lru()

        entry = CachedQuery(
            id=new_cache_id(),
            question=question,
            embedding=list(embedding),
            retrieval_results=list(results),
            timestamp=int(time.time() * 1000),
        )
        self._entries[entry.id] = entry
        self.index.add(entry.id, entry.embedding)
        self.stats.cached_questions = len(self._entries)

        logger.info(f"cache add | question={question!r} | total_cached={len(self._entries)}")
        return entry

    def _evict_lru(self) -> None:
        key, evicted = self._entries.popitem(last=False)
        self.index.remove(key)
        self.stats.evictions += 1
        logger.debug(f"cache evict | question={evicted.question!r}")

    def clear_cache(self) -> None:
        self._entries.clear()
        self.index.clear()
        self.stats.cached_questions = 0
        self.stats.hit_count = 0
        self.stats.miss_count = 0
        self.stats.evictions = 0
        logger.info("cache cleared")

    def get_stats(self) -> CacheStats:
        return CacheStats(
            total_questions=self.stats.total_questions,
            cached_questions=len(self._entries),
            hit_count=self.stats.hit_count,
            miss_count=self.stats.miss_count,
            evictions=self.stats.evictions,
            last_warm_time=self.stats.last_warm_time,
        )

    def cached_questions(self) -> list[str]:
        return [entry.question for entry in self._entries.values()]


# =============================================================================
# Cache warming
# =============================================================================

class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


class Retriever(Protocol):
    async def retrieve(self, vector: list[float], k: int | None = None) -> list:
        ...


def load_common_questions(path: str | Path) -> list[str]:
    """
    Load the warm-up question list from a JSON file of the form
    {"questions": ["...", ...]}.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    questions = data.get("questions") or []
    return [q for q in questions if isinstance(q, str) and q.strip()]


async def warm_cache(
    cache: SimilarityCache,
    questions: list[str],
    embedder: Embedder,
    retriever: Retriever,
    config: RerankerConfig | None = None,
    delay_seconds: float = 0.1,
) -> WarmResult:
    """
    Pre-compute retrieval results for common questions.

    Questions that already hit the cache are skipped. Errors are collected
    per question and never abort the batch.
    """
    config = config or RerankerConfig()
    errors: list[str] = []
    processed = 0

    cache.stats.total_questions = len(questions)
    logger.info(f"cache warm start | questions={len(questions)}")

    for question in questions:
        try:
            embedding = await embedder.embed(question)

            if cache.contains(embedding):
                logger.debug(f"cache warm skip | question={question!r} | reason=already_cached")
                processed += 1
                continue

            documents = await retriever.retrieve(embedding, config.initial_retrieval_count)
            ranked = rerank_documents(question, documents, config=config)
            cache.add_to_cache(question, embedding, ranked)
            processed += 1

            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
        except Exception as e:
            error_msg = f'Failed to cache question "{question}": {e}'
            logger.error(f"cache warm error | {error_msg}")
            errors.append(error_msg)

    cache.stats.last_warm_time = int(time.time() * 1000)
    logger.info(f"cache warm complete | processed={processed} | errors={len(errors)}")
    return WarmResult(success=True, processed=processed, errors=errors)
