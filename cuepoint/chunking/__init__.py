"""
cuepoint.chunking - Transcript chunking.

Pipeline Stage 3: Cut transcripts into overlapping, sentence-aligned chunks
with source timestamps.
"""

from __future__ import annotations

from cuepoint.chunking.chunker import TranscriptChunker, chunk_transcript, validate_chunks

__all__ = ["TranscriptChunker", "chunk_transcript", "validate_chunks"]
