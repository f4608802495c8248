"""
Vector retrieval: over-fetch candidates and convert raw matches into
RetrievedDocument objects for the reranker.
"""
from typing import Protocol

from telecom_rag.reranker import DocumentMetadata, RetrievedDocument
from telecom_rag.vector_store import VectorMatch

# Payload keys mapped onto DocumentMetadata fields; everything else goes to extra
KNOWN_PAYLOAD_KEYS = {"fileName", "lineNumber", "text", "folder"}


class VectorSearcher(Protocol):
    async def search(self, vector: list[float], k: int, include_metadata: bool = True) -> list[VectorMatch]:
        ...


def document_from_match(match: VectorMatch) -> RetrievedDocument:
    """Build a RetrievedDocument, defaulting missing payload fields."""
    payload = match.metadata or {}
    line_number = payload.get("lineNumber")
    return RetrievedDocument(
        id=str(match.id),
        score=float(match.score or 0.0),
        metadata=DocumentMetadata(
            file_name=payload.get("fileName") or "Unknown",
            line_number=line_number if line_number is not None else "0",
            text=payload.get("text") or "",
            folder=payload.get("folder"),
            extra={k: v for k, v in payload.items() if k not in KNOWN_PAYLOAD_KEYS},
        ),
    )


def documents_from_matches(matches: list[VectorMatch]) -> list[RetrievedDocument]:
    return [document_from_match(m) for m in matches]


class VectorRetriever:
    def __init__(self, store: VectorSearcher, initial_count: int = 20):
        self.store = store
        self.initial_count = initial_count

    async def search(self, vector: list[float], k: int | None = None) -> list[VectorMatch]:
        """Raw search; k below the over-fetch count is raised to it."""
        fetch_k = max(self.initial_count, k or 0)
        return await self.store.search(vector, fetch_k, include_metadata=True)

    async def nearest(self, vector: list[float], k: int) -> list[RetrievedDocument]:
        """Exactly the k nearest chunks, no over-fetch (plain semantic search)."""
        matches = await self.store.search(vector, k, include_metadata=True)
        return documents_from_matches(matches)

    async def retrieve(self, vector: list[float], k: int | None = None) -> list[RetrievedDocument]:
        matches = await self.search(vector, k)
        return documents_from_matches(matches)
