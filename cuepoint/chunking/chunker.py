"""
cuepoint.chunking.chunker - Semantic transcript chunking.

Turns a timestamped transcript into word-count-bounded chunks that break at
sentence endings where possible and overlap their neighbours, so a retrieval
hit near a boundary still carries its context. Every chunk keeps the start
and end time (seconds) of the transcript segments it came from.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from cuepoint.config import ChunkOptions
from cuepoint.exceptions import ChunkValidationFailed
from cuepoint.models import TextChunk, Transcript, TranscriptSegment

logger = logging.getLogger(__name__)

SENTENCE_END = re.compile(r"[.!?;]$")
BREAK_SEARCH_WINDOW = 100


class BreakFinder(Protocol):
    """Chooses where to cut a word buffer. Returns the exclusive cut index."""

    def find_break_point(self, words: Sequence[str]) -> int: ...


class PunctuationBreakFinder:
    """Cut after the last sentence-ending word near the end of the buffer.

    Only the last ``search_window`` words before the effective end are
    searched, and never below ``min_words``. Without a sentence ending the
    cut falls at ``target_words``.
    """

    def __init__(self, options: ChunkOptions, search_window: int = BREAK_SEARCH_WINDOW) -> None:
        self.options = options
        self.search_window = search_window

    def find_break_point(self, words: Sequence[str]) -> int:
        effective_length = min(len(words), self.options.max_words)
        search_start = max(self.options.min_words, effective_length - self.search_window)

        for i in range(effective_length - 1, search_start - 1, -1):
            if SENTENCE_END.search(words[i]):
                return i + 1

        return min(self.options.target_words, effective_length)


class TranscriptChunker:
    """Chunk transcripts into overlapping, sentence-aligned TextChunks."""

    def __init__(
        self,
        options: ChunkOptions | dict[str, Any] | None = None,
        break_finder: BreakFinder | None = None,
    ) -> None:
        if isinstance(options, ChunkOptions):
            self.options = options
        else:
            self.options = ChunkOptions(**(options or {}))
        self.break_finder = break_finder or PunctuationBreakFinder(self.options)

    def chunk(self, transcript: Transcript) -> list[TextChunk]:
        """Chunk a transcript.

        Args:
            transcript: Transcript with segments in source order

        Returns:
            Chunks indexed densely from 0 in emission order
        """
        opts = self.options
        segments = transcript.segments
        chunks: list[TextChunk] = []

        words: list[str] = []
        owners: list[int] = []
        anchor: int | None = None
        fresh = 0

        for pos, segment in enumerate(segments):
            segment_words = segment.text.split()
            if not segment_words:
                continue
            if anchor is None:
                anchor = pos

            words.extend(segment_words)
            owners.extend([pos] * len(segment_words))
            fresh += len(segment_words)

            while len(words) >= opts.target_words or len(words) > opts.max_words:
                cut = self.break_finder.find_break_point(words)
                chunks.append(
                    self._make_chunk(words[:cut], segments, anchor, owners[cut - 1], len(chunks))
                )

                fresh = min(fresh, len(words) - cut)
                keep_from = max(0, cut - opts.overlap_words)
                words = words[keep_from:]
                owners = owners[keep_from:]

                if words:
                    # keep the segments behind the overlap, at least the last two
                    anchor = max(anchor, min(owners[0], pos - 1))
                else:
                    anchor = None

        if fresh > 0 and anchor is not None:
            if len(words) > opts.max_words:
                logger.warning(
                    "Final chunk has %d words, truncating to %d", len(words), opts.max_words
                )
                words = words[: opts.max_words]
                owners = owners[: opts.max_words]
            chunks.append(self._make_chunk(words, segments, anchor, owners[-1], len(chunks)))

        if chunks:
            logger.info(
                "Chunking completed: %d chunks, avg %d words",
                len(chunks),
                round(sum(c.word_count for c in chunks) / len(chunks)),
            )
        return chunks

    def validate(self, chunks: Sequence[TextChunk]) -> None:
        """Raise ChunkValidationFailed if ``chunks`` break any quality rule."""
        report = validate_chunks(chunks, self.options)
        if not report["valid"]:
            raise ChunkValidationFailed(report["errors"])

    def _make_chunk(
        self,
        words: list[str],
        segments: Sequence[TranscriptSegment],
        first_segment: int,
        last_segment: int,
        index: int,
    ) -> TextChunk:
        start = segments[first_segment].start
        end = segments[last_segment].end
        if end < start:
            logger.warning(
                "Timestamp inversion in chunk %d: start=%.3f end=%.3f, clamping end to start",
                index,
                start,
                end,
            )
            end = start

        return TextChunk(
            text=" ".join(words),
            index=index,
            start_timestamp=start,
            end_timestamp=end,
            word_count=len(words),
        )


def chunk_transcript(
    transcript: Transcript,
    options: ChunkOptions | dict[str, Any] | None = None,
) -> list[TextChunk]:
    """Convenience wrapper: chunk a transcript with the given options."""
    return TranscriptChunker(options).chunk(transcript)


def validate_chunks(
    chunks: Sequence[TextChunk],
    options: ChunkOptions | None = None,
) -> dict[str, Any]:
    """Check chunk sizes, text and timestamp ordering.

    The final chunk may fall below ``min_words`` but every other rule applies
    to it. A start time lower than the previous chunk's signals an upstream
    transcript ordering bug and is reported, not tolerated.

    Returns:
        Dict with 'valid' and 'errors' (list of {'chunk_index', 'reason'})
    """
    options = options or ChunkOptions()
    errors: list[dict[str, Any]] = []
    last_position = len(chunks) - 1

    def report(chunk: TextChunk, reason: str) -> None:
        errors.append({"chunk_index": chunk.index, "reason": reason})

    for position, chunk in enumerate(chunks):
        if chunk.index != position:
            report(chunk, f"index {chunk.index} out of sequence (expected {position})")

        if not chunk.text or not chunk.text.strip():
            report(chunk, "chunk has no text")

        if chunk.word_count > options.max_words:
            report(chunk, f"{chunk.word_count} words exceeds maximum {options.max_words}")

        if position != last_position and chunk.word_count < options.min_words:
            report(chunk, f"{chunk.word_count} words below minimum {options.min_words}")

        if chunk.start_timestamp < 0:
            report(chunk, f"negative start timestamp {chunk.start_timestamp}")

        if chunk.end_timestamp < chunk.start_timestamp:
            report(
                chunk,
                f"ends at {chunk.end_timestamp} before it starts at {chunk.start_timestamp}",
            )

        if position > 0 and chunk.start_timestamp < chunks[position - 1].start_timestamp:
            report(
                chunk,
                f"starts at {chunk.start_timestamp}, before previous chunk start "
                f"{chunks[position - 1].start_timestamp}",
            )

    return {"valid": not errors, "errors": errors}


def chunk_statistics(chunks: Sequence[TextChunk]) -> dict[str, int]:
    """Summarize word counts across chunks."""
    if not chunks:
        return {
            "total_chunks": 0,
            "avg_word_count": 0,
            "min_word_count": 0,
            "max_word_count": 0,
            "total_words": 0,
        }

    counts = [c.word_count for c in chunks]
    total = sum(counts)
    return {
        "total_chunks": len(chunks),
        "avg_word_count": round(total / len(chunks)),
        "min_word_count": min(counts),
        "max_word_count": max(counts),
        "total_words": total,
    }
