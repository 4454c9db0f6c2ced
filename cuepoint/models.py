"""
cuepoint.models - Data models flowing between pipeline stages.

All timestamps are seconds since the start of the source video.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class TranscriptWord:
    """A single word with its own timing from the transcription engine."""

    word: str
    start: float
    end: float
    probability: float | None = None


@dataclass(frozen=True)
class TranscriptSegment:
    """A transcription engine's native unit of timestamped text."""

    id: int
    start: float
    end: float
    text: str
    words: tuple[TranscriptWord, ...] = ()

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Segment {self.id} ends before it starts ({self.start} > {self.end})")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranscriptSegment:
        return cls(
            id=int(data["id"]),
            start=float(data["start"]),
            end=float(data["end"]),
            text=data.get("text", ""),
            words=tuple(
                TranscriptWord(
                    word=w["word"],
                    start=float(w["start"]),
                    end=float(w["end"]),
                    probability=w.get("probability"),
                )
                for w in data.get("words") or []
            ),
        )


@dataclass(frozen=True)
class Transcript:
    """Full transcript of one video. Immutable once produced."""

    text: str
    language: str
    duration: float
    segments: tuple[TranscriptSegment, ...] = ()

    @property
    def word_count(self) -> int:
        return sum(len(s.text.split()) for s in self.segments)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transcript:
        segments = tuple(TranscriptSegment.from_dict(s) for s in data.get("segments", []))
        text = data.get("text")
        if text is None:
            text = " ".join(s.text.strip() for s in segments)
        return cls(
            text=text,
            language=data.get("language", "unknown"),
            duration=float(data.get("duration", segments[-1].end if segments else 0.0)),
            segments=segments,
        )


@dataclass
class AudioChunk:
    """One upload-sized piece of an audio file."""

    path: Path
    index: int
    duration_seconds: float
    size_bytes: int


@dataclass(frozen=True)
class TextChunk:
    """A bounded span of transcript text, the unit of retrieval."""

    text: str
    index: int
    start_timestamp: float
    end_timestamp: float
    word_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextChunk:
        text = data["text"]
        return cls(
            text=text,
            index=int(data["index"]),
            start_timestamp=float(data["start_timestamp"]),
            end_timestamp=float(data["end_timestamp"]),
            word_count=int(data.get("word_count", len(text.split()))),
        )


@dataclass
class EmbeddingResult:
    """Vector for one chunk, joined back on ``chunk_index``."""

    chunk_index: int
    embedding: list[float]
    token_count: int


@dataclass
class EmbeddingBatchResult:
    """Outcome of embedding a whole chunk sequence."""

    embeddings: list[EmbeddingResult] = field(default_factory=list)
    total_tokens: int = 0
    estimated_cost: float = 0.0
    api_calls: int = 0
    cache_hits: int = 0
