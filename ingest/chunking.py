"""
Line-based text chunking for the ingestion pipeline.

Chunks are built from whole lines so every chunk can be cited by the line
number it starts at.
"""
import math
from typing import TypedDict


class Chunk(TypedDict):
    text: str
    file_name: str
    line_number: int  # 1-based line of the first line in the chunk
    chunk_index: int


def chunk_lines(
    lines: list[str],
    file_name: str,
    chunk_size: int = 500,
    chunk_overlap: int = 50,
) -> list[Chunk]:
    """
    Group lines into chunks of roughly chunk_size characters.

    When a chunk is full, the next one starts with the last
    ceil(chunk_overlap / 50) lines of the previous chunk. A single line longer
    than chunk_size becomes its own chunk; lines are never split.

    Args:
        lines: File content split into lines (without newlines).
        file_name: Source file name stored on each chunk.
        chunk_size: Target size of each chunk in characters.
        chunk_overlap: Overlap, in characters, converted to whole lines.

    Returns:
        List of Chunk dictionaries in file order.
    """
    overlap_line_count = math.ceil(chunk_overlap / 50) if chunk_overlap > 0 else 0

    chunks: list[Chunk] = []
    current: list[str] = []
    current_length = 0
    line_number = 1

    for line in lines:
        if current_length + len(line) > chunk_size and current:
            chunks.append(
                Chunk(
                    text="\n".join(current),
                    file_name=file_name,
                    line_number=line_number - len(current),
                    chunk_index=len(chunks),
                )
            )
            overlap = current[-overlap_line_count:] if overlap_line_count else []
            current = [*overlap, line]
            current_length = len("\n".join(overlap)) + len(line)
        else:
            current.append(line)
            current_length += len(line) + 1  # newline

        line_number += 1

    if current:
        chunks.append(
            Chunk(
                text="\n".join(current),
                file_name=file_name,
                line_number=line_number - len(current),
                chunk_index=len(chunks),
            )
        )

    # Drop chunks that are only blank lines
    return [c for c in chunks if c["text"].strip()]
