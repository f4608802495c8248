"""
Qdrant vector index wrapper.
"""
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from telecom_rag.config import settings
from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class VectorMatch:
    """A raw nearest-neighbour match: point id, similarity and payload."""
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore:
    def __init__(
        self,
        client: AsyncQdrantClient | None = None,
        collection_name: str | None = None,
    ):
        self._client = client
        self.collection_name = collection_name or settings.qdrant_collection

    @property
    def client(self) -> AsyncQdrantClient:
        # Created on first use so importing the app never opens a connection
        if self._client is None:
            self._client = AsyncQdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
            )
        return self._client

    async def search(
        self,
        vector: list[float],
        k: int,
        include_metadata: bool = True,
    ) -> list[VectorMatch]:
        """
        Return the k points most similar to vector.

        Uses query_points (current qdrant-client API).
        """
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            limit=k,
            with_payload=include_metadata,
        )
        return [
            VectorMatch(
                id=str(point.id),
                score=point.score,
                metadata=dict(point.payload or {}) if include_metadata else {},
            )
            for point in response.points
        ]

    async def collection_exists(self) -> bool:
        return await self.client.collection_exists(self.collection_name)

    async def ensure_collection(self, dimension: int = 1536) -> None:
        """Create the collection (cosine distance) if it does not exist."""
        if not await self.collection_exists():
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
            )
            logger.info(f"qdrant collection_created | name={self.collection_name} | dim={dimension}")

    async def recreate_collection(self, dimension: int) -> None:
        """Drop and recreate the collection. Deletes existing data."""
        if await self.collection_exists():
            await self.client.delete_collection(self.collection_name)
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
        )
        logger.info(f"qdrant collection_recreated | name={self.collection_name} | dim={dimension}")

    async def upsert(self, ids: list[str], vectors: list[list[float]], payloads: list[dict]) -> int:
        """Upsert points; ids, vectors and payloads are aligned by position."""
        points = [
            PointStruct(id=point_id, vector=vector, payload=payload)
            for point_id, vector, payload in zip(ids, vectors, payloads)
        ]
        if points:
            await self.client.upsert(collection_name=self.collection_name, points=points)
        return len(points)
