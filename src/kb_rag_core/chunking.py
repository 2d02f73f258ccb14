from __future__ import annotations

import math
import re
from collections.abc import Iterator
from dataclasses import dataclass

from kb_rag_core.errors import InputError

CHARS_PER_TOKEN = 4

_PARAGRAPH_SEP = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_SEP = re.compile(r"(?<=[.!?])\s+")
_WORD_SEP = re.compile(r"\s+")
_TIERS = (_PARAGRAPH_SEP, _SENTENCE_SEP, _WORD_SEP)


@dataclass(frozen=True)
class TextChunk:
    chunk_index: int
    text: str
    token_count: int
    char_start: int
    char_end: int


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _split(text: str, start: int, end: int, sep: re.Pattern[str]) -> list[tuple[int, int]]:
    # Separators stay attached to the span before them, so spans tile [start, end).
    spans: list[tuple[int, int]] = []
    cur = start
    for m in sep.finditer(text, start, end):
        if m.start() <= cur:
            continue
        spans.append((cur, m.end()))
        cur = m.end()
    if cur < end:
        spans.append((cur, end))
    return spans


def _segments(text: str, start: int, end: int, budget: int, tier: int = 0) -> Iterator[tuple[int, int]]:
    if end - start <= budget:
        yield start, end
        return
    if tier < len(_TIERS):
        for s, e in _split(text, start, end, _TIERS[tier]):
            yield from _segments(text, s, e, budget, tier + 1)
        return
    # A single "word" longer than the budget, possibly with a long whitespace run
    # around it. Only the word is cut; the whitespace stays whole.
    piece = text[start:end]
    if not piece.strip():
        yield start, end
        return
    lo = start + len(piece) - len(piece.lstrip())
    hi = start + len(piece.rstrip())
    if lo > start:
        yield start, lo
    for s in range(lo, hi, budget):
        yield s, min(s + budget, hi)
    if hi < end:
        yield hi, end


def chunk_text(
    *,
    text: str,
    max_tokens: int = 800,
    overlap_tokens: int = 50,
) -> list[TextChunk]:
    """
    Splits text into overlapping chunks bounded by an approximate token budget.

    Paragraphs (blank-line separated) are packed greedily; a paragraph that does not
    fit is broken into sentences, a sentence into words, and a word into fixed-size
    pieces. Each chunk after the first starts with the last ``overlap_tokens`` worth
    of characters of the chunk before it.

    Chunks are exact slices of ``text`` (``text[char_start:char_end]``), so dropping
    the overlap prefix of every chunk but the first and concatenating reproduces the
    input. Whitespace is never split into a chunk of its own; a long whitespace run
    stays with its neighbouring text and is not counted in ``token_count``.
    """
    if max_tokens <= 0:
        raise InputError("max_tokens must be > 0")
    if overlap_tokens < 0:
        raise InputError("overlap_tokens must be >= 0")
    if overlap_tokens >= max_tokens:
        raise InputError("overlap_tokens must be < max_tokens")

    if not text or not text.strip():
        return []

    max_chars = max_tokens * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    # Every segment must fit next to an overlap prefix.
    segment_budget = max_chars - overlap_chars

    chunks: list[TextChunk] = []

    def emit(start: int, end: int) -> None:
        value = text[start:end]
        chunks.append(
            TextChunk(
                chunk_index=len(chunks),
                text=value,
                token_count=estimate_tokens(value.strip()),
                char_start=start,
                char_end=end,
            )
        )

    chunk_start: int | None = None
    chunk_end = 0
    has_content = False
    for seg_start, seg_end in _segments(text, 0, len(text), segment_budget):
        blank = not text[seg_start:seg_end].strip()
        if chunk_start is None:
            chunk_start, chunk_end = seg_start, seg_end
            has_content = not blank
            continue
        # Whitespace never forms a chunk of its own: it rides on the chunk before
        # it, and a chunk holding only whitespace takes the next segment whatever
        # its size.
        if blank or not has_content or seg_end - chunk_start <= max_chars:
            chunk_end = seg_end
            has_content = has_content or not blank
            continue
        emit(chunk_start, chunk_end)
        chunk_start = chunk_end - overlap_chars
        chunk_end = seg_end

    if chunk_start is not None:
        emit(chunk_start, chunk_end)

    return chunks
