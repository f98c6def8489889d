"""Transcript chunking and per-agenda-item note merging.

Long transcripts are split on paragraph boundaries into chunks of at most
``max_chars`` characters so each summarization call stays within a
practical context/latency budget. The chunk count is capped; once the cap
is reached the remaining text is folded into the last chunk rather than
dropped, so every non-whitespace character of the transcript reaches the
summarizer.

Per-chunk notes are merged into one running note per agenda item with
merge_note(): substring-aware union, empty strings never overwrite.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_CHARS = 12_000
DEFAULT_MAX_CHUNKS = 10
PARAGRAPH_SEPARATOR = "\n\n"


def _slice(paragraph: str, width: int) -> list[str]:
    return [paragraph[i : i + width] for i in range(0, len(paragraph), width)]


def split_transcript(
    text: str,
    max_chars: int = DEFAULT_CHUNK_CHARS,
    max_chunks: int = DEFAULT_MAX_CHUNKS,
) -> list[str]:
    """Split a transcript into ordered chunks.

    Paragraphs (separated by a blank line) accumulate until the next one
    would overflow ``max_chars``. A single paragraph longer than the budget
    is cut into fixed-width slices.

    Args:
        text: Full transcript.
        max_chars: Character budget per chunk.
        max_chunks: Maximum number of chunks returned.

    Returns:
        Chunks in transcript order; empty list for blank input.
    """
    if max_chars <= 0 or max_chunks <= 0:
        raise ValueError("max_chars and max_chunks must be positive")

    paragraphs = [p.strip() for p in text.split(PARAGRAPH_SEPARATOR)]
    paragraphs = [p for p in paragraphs if p]

    chunks: list[str] = []
    current = ""
    for paragraph in paragraphs:
        if len(paragraph) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_slice(paragraph, max_chars))
            continue

        candidate = f"{current}{PARAGRAPH_SEPARATOR}{paragraph}" if current else paragraph
        if len(candidate) > max_chars:
            chunks.append(current)
            current = paragraph
        else:
            current = candidate

    if current:
        chunks.append(current)

    if len(chunks) > max_chunks:
        head = chunks[: max_chunks - 1]
        tail = PARAGRAPH_SEPARATOR.join(chunks[max_chunks - 1 :])
        # The folded chunk is the only one allowed past max_chars
        logger.warning(
            "transcript_chunk_cap_reached",
            chunk_count=len(chunks),
            max_chunks=max_chunks,
            transcript_chars=len(text),
            last_chunk_chars=len(tail),
            overflow_chars=max(len(tail) - max_chars, 0),
        )
        chunks = [*head, tail]

    return chunks


def merge_note(accumulated: str, new: str) -> str:
    """Merge one chunk's note for an agenda item into the running note.

    - empty/whitespace ``new`` leaves ``accumulated`` unchanged
    - if either text contains the other, the longer one wins
    - otherwise the two are joined with a newline
    """
    new = (new or "").strip()
    accumulated = accumulated or ""
    if not new:
        return accumulated
    if not accumulated:
        return new
    if new in accumulated:
        return accumulated
    if accumulated in new:
        return new
    return f"{accumulated}\n{new}"


def merge_chunk_notes(
    item_ids: Iterable[str],
    chunk_results: Iterable[Mapping[str, str]],
) -> dict[str, str]:
    """Fold per-chunk mappings into one note per agenda item, in chunk order.

    Every id in ``item_ids`` is present in the result, with "" if it was
    never discussed. Ids not in ``item_ids`` are ignored.
    """
    merged = {item_id: "" for item_id in item_ids}
    for result in chunk_results:
        for item_id in merged:
            merged[item_id] = merge_note(merged[item_id], result.get(item_id, ""))
    return merged
