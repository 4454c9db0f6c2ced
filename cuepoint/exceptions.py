"""
cuepoint.exceptions - Custom exception classes.

All Cuepoint-specific exceptions inherit from CuepointError.
"""

from __future__ import annotations

from typing import Any


class CuepointError(Exception):
    """Base exception for all Cuepoint errors."""

    pass


class ConfigError(CuepointError):
    """Configuration loading or validation error."""

    pass


class ValidationError(CuepointError):
    """Input file or environment validation error."""

    pass


class DependencyError(CuepointError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")


class ExtractionUnavailable(DependencyError):
    """The ffmpeg/ffprobe toolchain is not installed on this host."""

    pass


class ExtractionError(CuepointError):
    """Audio toolchain invocation error."""

    pass


class ExtractionFailed(ExtractionError):
    """ffmpeg failed or did not produce the expected audio file."""

    pass


class SplitFailed(ExtractionError):
    """Audio could not be split into upload-sized chunks."""

    pass


class DurationProbeFailed(ExtractionError):
    """ffprobe did not return a usable duration."""

    pass


class TranscriptionError(CuepointError):
    """Transcription error."""

    pass


class ChunkingError(CuepointError):
    """Transcript chunking error."""

    pass


class ChunkingConfigInvalid(ChunkingError):
    """Chunk size options violate min <= target <= max or overlap < min."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.details = details or {}
        super().__init__(message)


class ChunkValidationFailed(ChunkingError):
    """Produced chunks failed quality checks.

    ``errors`` holds one ``{"chunk_index": int, "reason": str}`` entry per
    problem so upstream transcript defects can be traced to a chunk.
    """

    def __init__(self, errors: list[dict[str, Any]]):
        self.errors = errors
        indices = sorted({e["chunk_index"] for e in errors})
        super().__init__(f"{len(errors)} chunk validation error(s) in chunks {indices}")


class EmbeddingError(CuepointError):
    """Embedding generation error."""

    pass


class EmbeddingResponseError(EmbeddingError):
    """Embedding backend returned malformed or unexpected data."""

    pass


class EmbeddingFailed(EmbeddingError):
    """A batch failed after exhausting its retry budget.

    Attributes:
        batch_number: Zero-based number of the failed batch
        failed_indices: Chunk indices of the batch that have no vector
        completed: EmbeddingResults from batches that finished before the failure
    """

    def __init__(
        self,
        message: str,
        batch_number: int,
        failed_indices: list[int],
        completed: list[Any] | None = None,
    ):
        self.batch_number = batch_number
        self.failed_indices = failed_indices
        self.completed = completed or []
        super().__init__(message)


class PipelineCancelled(CuepointError):
    """A pipeline run was cancelled before it finished."""

    pass
