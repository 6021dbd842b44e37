# =============================================================================
# Character Chunker - Overlapping Sliding Window
# =============================================================================
#
# Splits extracted document text into fixed-size, overlapping spans. Each
# span becomes one embedding and one index entry.
#
# ALGORITHM:
# 1. Reject text that is empty after trimming (yields no chunks)
# 2. Slide a window of `size` characters over the ORIGINAL text
# 3. Advance the window start by `size - overlap` (at least 1) each step
# 4. Stop once the window reaches the end; the last chunk may be shorter
# 5. Never start a window inside trailing whitespace
#
# Chunks are cut from the untrimmed text, so dropping the overlapped
# prefix of every chunk after the first and concatenating reconstructs the
# input exactly, except for trailing whitespace no chunk reaches (see
# merge_chunks).
#
# Page attribution: the extractor reports the character offset at which
# every page/slide starts. A chunk is attributed to the page containing
# its first character.
# =============================================================================

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 200


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChunkResult:
    """A single chunk ready for embedding and storage."""

    content: str
    chunk_index: int  # 0-indexed position within the document
    start: int  # character offset of the chunk in the source text
    page_number: int | None = None  # 1-indexed page/slide, when known


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_text(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """
    Split text into overlapping fixed-size chunks.

    Args:
        text: The full document text.
        size: Maximum characters per chunk (default 2000).
        overlap: Characters shared by consecutive chunks (default 200).
            An overlap >= size degrades to a step of 1 character.

    Returns:
        Ordered list of non-empty chunks. Empty when `text` is blank.

    Raises:
        ValueError: If size is not positive or overlap is negative.
    """
    return [chunk for _, chunk in _iter_windows(text, size, overlap)]


def chunk_document(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    page_starts: Sequence[int] | None = None,
) -> list[ChunkResult]:
    """
    Chunk text and attach positional metadata to each chunk.

    Args:
        text: The full document text.
        size: Maximum characters per chunk.
        overlap: Characters shared by consecutive chunks.
        page_starts: Sorted character offsets where each page begins
            (page 1 first). None for documents without pages.

    Returns:
        List of ChunkResult in document order.
    """
    chunks = [
        ChunkResult(
            content=chunk,
            chunk_index=i,
            start=start,
            page_number=_page_for_offset(page_starts, start),
        )
        for i, (start, chunk) in enumerate(_iter_windows(text, size, overlap))
    ]

    if chunks:
        logger.debug(
            "Chunked %d chars into %d chunks (size=%d, overlap=%d)",
            len(text), len(chunks), size, overlap,
        )
    return chunks


def merge_chunks(
    chunks: Sequence[str],
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> str:
    """
    Inverse of chunk_text(): drop the overlapped prefix of every chunk
    after the first and concatenate.

    Trailing whitespace that would only have formed blank chunks is not
    recovered.
    """
    if not chunks:
        return ""
    shared = size - _step(size, overlap)
    return chunks[0] + "".join(chunk[shared:] for chunk in chunks[1:])


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _step(size: int, overlap: int) -> int:
    return max(size - overlap, 1)


def _iter_windows(text: str, size: int, overlap: int) -> Iterator[tuple[int, str]]:
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    if overlap < 0:
        raise ValueError(f"chunk overlap must not be negative, got {overlap}")

    if not text or not text.strip():
        return

    step = _step(size, overlap)
    # Windows starting in trailing whitespace would be blank
    limit = len(text.rstrip())
    start = 0
    while start < limit:
        end = start + size
        yield start, text[start:end]
        if end >= len(text):
            break
        start += step


def _page_for_offset(page_starts: Sequence[int] | None, offset: int) -> int | None:
    """Return the 1-indexed page containing `offset`, or None without pages."""
    if not page_starts:
        return None
    return max(bisect.bisect_right(page_starts, offset), 1)
