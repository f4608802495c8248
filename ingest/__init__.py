"""
Ingestion module for telecom-rag.

Components:
- chunking: Line-based text chunking
- pipeline: Files -> chunks -> embeddings -> Qdrant

Usage:
    python -m ingest.ingest_cli --dir data/raw --recreate
"""
from ingest.chunking import Chunk, chunk_lines
from ingest.pipeline import IngestionPipeline, IngestionStats, ingest

__all__ = [
    "Chunk",
    "chunk_lines",
    "IngestionPipeline",
    "IngestionStats",
    "ingest",
]
