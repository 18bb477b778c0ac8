"""
Merge per-chunk transcripts into a single transcript.
Chunks do not overlap, so texts are joined as-is with a blank line and
chunk-local timestamps are shifted onto the source timeline.
"""

import logging

from mediapress.core.models_sqlite import TimestampEntry, ChunkTranscript, TranscriptResult

logger = logging.getLogger(__name__)


def merge_transcripts(texts: list[str]) -> str:
    """Join texts in order with a blank line; empty texts are skipped."""
    return "\n\n".join(t.strip() for t in texts if t and t.strip())


def rebase_timestamps(entries: list[TimestampEntry], chunk_start: float,
                      chunk_duration: float | None = None) -> list[TimestampEntry]:
    """
    Sort chunk-local entries, clamp them into [0, chunk_duration] and shift
    them by chunk_start.
    """
    rebased = []
    for entry in sorted(entries, key=lambda e: e.offset_seconds):
        offset = max(0.0, entry.offset_seconds)
        if chunk_duration is not None and offset > chunk_duration:
            offset = chunk_duration
        rebased.append(TimestampEntry(offset_seconds=chunk_start + offset, text=entry.text))
    return rebased


def merge_chunk_results(results: list[tuple[float, float, ChunkTranscript]]) -> TranscriptResult:
    """
    Merge (start_seconds, duration, ChunkTranscript) tuples already in index
    order. Timestamps come out non-decreasing because chunks are contiguous.
    """
    texts = []
    timestamps: list[TimestampEntry] = []
    for start, duration, chunk in results:
        texts.append(chunk.text)
        timestamps.extend(rebase_timestamps(chunk.timestamps, start, duration))

    merged = merge_transcripts(texts)
    logger.debug("Merged %d chunk transcript(s): %d chars, %d timestamps",
                 len(results), len(merged), len(timestamps))
    return TranscriptResult(transcript=merged, timestamps=timestamps)
