"""Sliding-window text chunking for page text."""

from typing import List

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 150


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """
    Split text into overlapping fixed-size passages.

    The window is ``chunk_size`` characters wide and advances by
    ``chunk_size - chunk_overlap`` characters; the last window is clipped to
    the end of the text. Dropping the first ``chunk_overlap`` characters of
    every chunk after the first and concatenating gives back ``text``.

    Args:
        text: Page text to split
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared by consecutive chunks

    Returns:
        Chunks in reading order; empty for empty or whitespace-only text

    Raises:
        ValueError: If the size parameters are out of range
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, {chunk_size}), got {chunk_overlap}"
        )

    if not text.strip():
        return []

    step = chunk_size - chunk_overlap
    chunks = []
    start = 0
    while True:
        chunks.append(text[start:start + chunk_size])
        if start + chunk_size >= len(text):
            break
        start += step

    return chunks
