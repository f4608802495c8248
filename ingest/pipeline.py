"""
Ingestion pipeline: plain-text files -> line chunks -> embeddings -> Qdrant.

Features:
- Idempotent upserts (same file + same content = same point IDs)
- Sequential embedding batches
- Per-file errors collected without aborting the run
"""
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from telecom_rag.config import settings
from telecom_rag.embeddings import EmbeddingClient
from telecom_rag.logging_config import get_logger
from telecom_rag.vector_store import VectorStore
from ingest.chunking import Chunk, chunk_lines

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".md")


def generate_point_id(relative_path: str, content_hash: str, chunk_index: int) -> str:
    """
    Deterministic UUID for a Qdrant point.

    Re-ingesting an unchanged file overwrites its points instead of
    duplicating them.
    """
    key = f"{relative_path}:{content_hash}:{chunk_index}"
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, key))


def build_payload(chunk: Chunk, folder: str | None) -> dict:
    """Payload keys read back by the retriever."""
    payload = {
        "fileName": chunk["file_name"],
        "lineNumber": chunk["line_number"],
        "chunkIndex": chunk["chunk_index"],
        "text": chunk["text"],
    }
    if folder:
        payload["folder"] = folder
    return payload


def iter_files(directory: Path, extensions: tuple[str, ...] = SUPPORTED_EXTENSIONS) -> list[Path]:
    return sorted(
        p for p in directory.rglob("*")
        if p.is_file() and p.suffix.lower() in extensions and not p.name.startswith(".")
    )


@dataclass
class IngestionStats:
    """Statistics from an ingestion run."""
    files_found: int = 0
    files_processed: int = 0
    chunks_created: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class IngestionPipeline:
    def __init__(
        self,
        embedder: EmbeddingClient | None = None,
        store: VectorStore | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ):
        self.embedder = embedder or EmbeddingClient()
        self.store = store or VectorStore()
        self.chunk_size = chunk_size or settings.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else settings.chunk_overlap
        self._collection_ready = False

    async def _prepare_collection(self, dimension: int, recreate: bool) -> None:
        if recreate:
            await self.store.recreate_collection(dimension)
        else:
            await self.store.ensure_collection(dimension)
        self._collection_ready = True

    async def ingest_file(self, path: Path, root: Path, recreate: bool = False) -> int:
        """
        Ingest one file.

        Returns:
            Number of chunks upserted.
        """
        content = path.read_text(encoding="utf-8", errors="replace")
        relative = path.relative_to(root).as_posix()
        folder = path.parent.relative_to(root).as_posix()
        folder = None if folder == "." else folder

        chunks = chunk_lines(
            content.splitlines(),
            file_name=path.name,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )
        logger.info(f"ingest file | path={relative} | chars={len(content)} | chunks={len(chunks)}")
        if not chunks:
            return 0

        embeddings = await self.embedder.embed_batch([c["text"] for c in chunks])

        if not self._collection_ready:
            await self._prepare_collection(len(embeddings[0]), recreate)

        content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        ids = [generate_point_id(relative, content_hash, c["chunk_index"]) for c in chunks]
        payloads = [build_payload(c, folder) for c in chunks]

        return await self.store.upsert(ids, embeddings, payloads)

    async def ingest_directory(self, directory: Path, recreate: bool = False) -> IngestionStats:
        stats = IngestionStats()
        files = iter_files(directory)
        stats.files_found = len(files)
        logger.info(f"ingest start | dir={directory} | files={len(files)} | recreate={recreate}")

        for path in files:
            try:
                stats.chunks_created += await self.ingest_file(path, directory, recreate=recreate)
                stats.files_processed += 1
            except Exception as e:
                error_msg = f"Error processing {path.name}: {e}"
                logger.error(f"ingest error | {error_msg}")
                stats.errors.append(error_msg)

        stats.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"ingest complete | processed={stats.files_processed}/{stats.files_found} | "
            f"chunks={stats.chunks_created} | errors={len(stats.errors)} | "
            f"duration={stats.duration_seconds:.1f}s"
        )
        return stats


async def ingest(directory: Path, recreate: bool = False) -> IngestionStats:
    """Ingest every supported file under directory."""
    pipeline = IngestionPipeline()
    return await pipeline.ingest_directory(directory, recreate=recreate)
