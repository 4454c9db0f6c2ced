"""
Cuepoint - video transcript ingestion for retrieval.

Takes long-form video and produces timestamp-anchored, embedded text chunks
through a pipeline: audio extraction → size-bounded splitting →
transcription → semantic chunking → batched embedding.
"""

__version__ = "0.1.0"
