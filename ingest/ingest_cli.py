"""
Ingestion CLI for telecom-rag.

Usage:
    python -m ingest.ingest_cli [--dir data/raw] [--recreate]
"""
import argparse
import asyncio
import sys
from pathlib import Path

from telecom_rag.config import settings
from telecom_rag.logging_config import setup_logging
from ingest.pipeline import ingest


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Ingest plain-text documents into Qdrant for RAG"
    )
    parser.add_argument(
        "--dir",
        type=str,
        default="data/raw",
        help="Directory of .txt/.md files (default: data/raw)",
    )
    parser.add_argument(
        "--recreate",
        action="store_true",
        help="Recreate the Qdrant collection (deletes existing data)",
    )
    args = parser.parse_args()

    setup_logging(settings.log_level)

    directory = Path(args.dir)
    if not directory.is_dir():
        print(f"Error: Directory not found: {directory}")
        sys.exit(1)

    stats = asyncio.run(ingest(directory, recreate=args.recreate))

    if stats.files_processed == 0:
        print("\nNo documents were ingested. Check the source path and file formats.")
        sys.exit(1)

    if stats.errors:
        sys.exit(2)


if __name__ == "__main__":
    main()
