"""
Boundary-aware document chunking.

Splits normalized text into overlapping chunks while preserving:
    - Natural break points (paragraph > sentence > word)
    - Character offsets into the normalized source text
    - Markdown section boundaries (## and ### headers)

Sizes are expressed in tokens and converted to characters at ~4 chars/token.
"""

import math
import re
from dataclasses import replace

from kbsearch.models import Chunk, ChunkStats

CHARS_PER_TOKEN = 4
BREAK_WINDOW = 200
"""Characters searched on either side of the target end for a break point."""

MARKDOWN_MIME_TYPES = frozenset({"text/markdown", "text/x-markdown"})

_PARAGRAPH_BREAK = re.compile(r"\n\n")
_SENTENCE_BREAK = re.compile(r"[.!?]\s+")
_WORD_BREAK = re.compile(r"\s+")
_MARKDOWN_SECTION = re.compile(r"^#{2,3}\s", re.MULTILINE)


def estimate_tokens(text: str) -> int:
    """Estimate token count (~4 characters per token for English)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def normalize_text(text: str) -> str:
    """
    Normalize line endings and collapse blank-line runs.

    Args:
        text: Raw document text

    Returns:
        Text with LF line endings, at most one blank line in a row, trimmed
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def chunk_text(
    text: str,
    chunk_size: int = 500,
    overlap: int = 50,
    min_chunk_size: int = 100,
) -> list[Chunk]:
    """
    Split text into overlapping chunks at natural boundaries.

    A slice cut mid-walk is discarded when it falls below the minimum, which
    leaves a gap in coverage. Slices are at least ``chunk_size*4 - 200``
    characters long, so text is fully covered as long as ``chunk_size``
    exceeds ``min_chunk_size`` by more than 50 tokens (the defaults do).

    Args:
        text: Document text to chunk
        chunk_size: Target chunk size in tokens
        overlap: Overlap between consecutive chunks in tokens
        min_chunk_size: Chunks shorter than this (in tokens) are discarded,
            unless the chunk is the only one produced

    Returns:
        List of Chunk objects with contiguous indices

    Raises:
        ValueError: If chunk_size <= 0, overlap is negative or >= chunk_size,
            or min_chunk_size is negative
    """
    _validate(chunk_size, overlap, min_chunk_size)

    cleaned = normalize_text(text)
    if not cleaned:
        return []

    return _walk(cleaned, 0, chunk_size, overlap, min_chunk_size)


def chunk_markdown(
    text: str,
    chunk_size: int = 500,
    overlap: int = 50,
    min_chunk_size: int = 100,
) -> list[Chunk]:
    """
    Split markdown into chunks, breaking first on ## and ### headers.

    Sections larger than 1.5x the target size are walked with the generic
    algorithm. Sections below the minimum size are merged into the next
    section; a small trailing section is folded into the last chunk.

    Args:
        text: Markdown document text to chunk
        chunk_size: Target chunk size in tokens
        overlap: Overlap between consecutive chunks in tokens
        min_chunk_size: Minimum chunk size in tokens

    Returns:
        List of Chunk objects with contiguous indices

    Raises:
        ValueError: If the size arguments are invalid
    """
    _validate(chunk_size, overlap, min_chunk_size)

    cleaned = normalize_text(text)
    if not cleaned:
        return []

    boundaries = sorted(
        {0, len(cleaned)} | {m.start() for m in _MARKDOWN_SECTION.finditer(cleaned)}
    )

    chunks: list[Chunk] = []
    pending_start: int | None = None

    for section_start, section_end in zip(boundaries, boundaries[1:]):
        start = section_start if pending_start is None else pending_start
        pending_start = None

        section = cleaned[start:section_end]
        content = section.strip()
        if not content:
            continue

        tokens = estimate_tokens(content)
        if tokens > chunk_size * 1.5:
            for sub_chunk in _walk(section, start, chunk_size, overlap, min_chunk_size):
                chunks.append(replace(sub_chunk, index=len(chunks)))
        elif len(content) >= min_chunk_size * CHARS_PER_TOKEN:
            chunks.append(_make_chunk(content, len(chunks), start, section_end))
        else:
            pending_start = start

    if pending_start is not None:
        tail = cleaned[pending_start:].strip()
        if tail and chunks:
            chunks[-1] = _extend_to_end(chunks[-1], cleaned, 0)
        elif tail:
            chunks.append(_make_chunk(tail, 0, pending_start, len(cleaned)))

    return chunks


def chunk_document(
    text: str,
    mime_type: str,
    chunk_size: int = 500,
    overlap: int = 50,
    min_chunk_size: int = 100,
) -> list[Chunk]:
    """Pick the chunking strategy for a mime type."""
    if mime_type in MARKDOWN_MIME_TYPES:
        return chunk_markdown(text, chunk_size, overlap, min_chunk_size)
    return chunk_text(text, chunk_size, overlap, min_chunk_size)


def get_chunk_stats(chunks: list[Chunk]) -> ChunkStats:
    """
    Compute token statistics for a list of chunks.

    Args:
        chunks: Chunks produced by one of the chunking functions

    Returns:
        ChunkStats (all zeros for an empty list)
    """
    if not chunks:
        return ChunkStats()

    token_counts = [chunk.token_count for chunk in chunks]
    total_tokens = sum(token_counts)

    return ChunkStats(
        total_chunks=len(chunks),
        total_tokens=total_tokens,
        avg_tokens_per_chunk=round(total_tokens / len(chunks)),
        min_tokens=min(token_counts),
        max_tokens=max(token_counts),
    )


def _validate(chunk_size: int, overlap: int, min_chunk_size: int) -> None:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")
    if overlap >= chunk_size:
        raise ValueError(
            f"overlap ({overlap}) must be less than chunk_size ({chunk_size})"
        )
    if min_chunk_size < 0:
        raise ValueError(f"min_chunk_size must be non-negative, got {min_chunk_size}")


def _walk(
    text: str,
    offset: int,
    chunk_size: int,
    overlap: int,
    min_chunk_size: int,
) -> list[Chunk]:
    """
    Walk already-normalized text and cut it into chunks.

    Args:
        text: Normalized text (or a section of it)
        offset: Position of ``text`` within the full normalized document
        chunk_size: Target chunk size in tokens
        overlap: Overlap in tokens
        min_chunk_size: Minimum chunk size in tokens

    Returns:
        Chunks with absolute offsets and indices starting at 0
    """
    target_chars = chunk_size * CHARS_PER_TOKEN
    overlap_chars = overlap * CHARS_PER_TOKEN
    min_chars = min_chunk_size * CHARS_PER_TOKEN

    chunks: list[Chunk] = []
    length = len(text)
    start_pos = 0

    while start_pos < length:
        target_end = start_pos + target_chars

        # Near the end: take the rest
        if target_end >= length - min_chars:
            content = text[start_pos:].strip()
            if content and (len(content) >= min_chars or not chunks):
                chunks.append(
                    _make_chunk(content, len(chunks), offset + start_pos, offset + length)
                )
            elif content:
                chunks[-1] = _extend_to_end(chunks[-1], text, offset)
            break

        end_pos = _find_break_point(text, target_end)
        content = text[start_pos:end_pos].strip()

        if len(content) >= min_chars:
            chunks.append(
                _make_chunk(content, len(chunks), offset + start_pos, offset + end_pos)
            )

        # +1 floor keeps the cursor moving when overlap would stall it
        start_pos = max(start_pos + 1, end_pos - overlap_chars)

    return chunks


def _find_break_point(text: str, target: int, window: int = BREAK_WINDOW) -> int:
    """
    Find the break point closest to ``target`` within ``window`` characters.

    Priority: paragraph break > sentence end > whitespace. The returned
    position is just past the matched separator; ``target`` itself is returned
    when the window holds no separator at all.
    """
    start = max(0, target - window)
    end = min(len(text), target + window)
    segment = text[start:end]

    for pattern in (_PARAGRAPH_BREAK, _SENTENCE_BREAK, _WORD_BREAK):
        matches = list(pattern.finditer(segment))
        if matches:
            closest = min(matches, key=lambda m: abs(start + m.start() - target))
            return start + closest.end()

    return target


def _make_chunk(content: str, index: int, start_char: int, end_char: int) -> Chunk:
    return Chunk(
        content=content,
        index=index,
        token_count=estimate_tokens(content),
        start_char=start_char,
        end_char=end_char,
    )


def _extend_to_end(chunk: Chunk, text: str, offset: int) -> Chunk:
    """Grow ``chunk`` so it runs to the end of ``text``."""
    content = text[chunk.start_char - offset :].strip()
    return replace(
        chunk,
        content=content,
        token_count=estimate_tokens(content),
        end_char=offset + len(text),
    )
