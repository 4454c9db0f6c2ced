"""
cuepoint.pipeline - Per-video pipeline orchestration and persistence.

Runs extract → split → transcribe → chunk → embed → persist for one video,
removes every temporary audio file it created on success and failure, and
reports a single terminal status naming the stage that stopped the run.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from cuepoint.chunking.chunker import TranscriptChunker
from cuepoint.config import CuepointConfig
from cuepoint.embed.batcher import EmbeddingBatcher
from cuepoint.embed.cache import FileEmbeddingCache, InMemoryEmbeddingCache
from cuepoint.exceptions import (
    ChunkingError,
    DurationProbeFailed,
    EmbeddingError,
    ExtractionFailed,
    PipelineCancelled,
    SplitFailed,
)
from cuepoint.extract.audio import extract_audio, validate_audio_file
from cuepoint.extract.splitter import cleanup_audio_chunks, split_audio
from cuepoint.io import read_json, remove_file, write_json
from cuepoint.models import AudioChunk, EmbeddingBatchResult, TextChunk, Transcript
from cuepoint.transcribe.engine import Transcriber
from cuepoint.validation import validate_video_file

logger = logging.getLogger(__name__)

TOOLCHAIN_ERRORS = (ExtractionFailed, SplitFailed, DurationProbeFailed)


def work_audio_path(video_path: Path, codec: str) -> Path:
    """Run-unique audio path next to the video, e.g. ``talk.3f9c01ab.wav``."""
    return video_path.with_name(f"{video_path.stem}.{uuid.uuid4().hex[:8]}.{codec}")


def video_ids_for(video_paths: Sequence[Path]) -> list[str]:
    """Output ids for a set of videos, one per path.

    A video's id is its file stem. Stems shared by several distinct inputs
    (``talk.mp4`` and ``talk.mov``) get a short hash of the resolved path
    appended so their outputs do not collide.
    """
    resolved = [p.resolve() for p in video_paths]
    stems = Counter(p.stem for p in set(resolved))
    ids = []
    for path in resolved:
        if stems[path.stem] > 1:
            digest = hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:8]
            ids.append(f"{path.stem}-{digest}")
        else:
            ids.append(path.stem)
    return ids


class CancelToken:
    """Cooperative cancellation flag shared between a caller and a run.

    In-flight external calls finish; no new batch or audio segment starts
    once the token is set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("Pipeline run was cancelled")


@dataclass
class PipelineResult:
    """Terminal status of one video's run."""

    video_id: str
    status: str
    stage: str | None = None
    message: str | None = None
    chunk_count: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    output_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"


class JsonChunkStore:
    """Persists chunks joined with their vectors, one JSON file per video."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def path_for(self, video_id: str) -> Path:
        return self.output_dir / f"{video_id}.json"

    def save(
        self,
        video_id: str,
        transcript: Transcript,
        chunks: Sequence[TextChunk],
        embeddings: EmbeddingBatchResult,
        model: str | None = None,
    ) -> Path:
        """Write chunk records keyed by ``chunk_index``.

        Raises:
            EmbeddingError: If a chunk has no matching vector
        """
        vectors = {e.chunk_index: e for e in embeddings.embeddings}
        records = []
        for chunk in chunks:
            result = vectors.get(chunk.index)
            if result is None:
                raise EmbeddingError(f"Chunk {chunk.index} has no embedding")
            records.append(
                {
                    "chunk_index": chunk.index,
                    "text": chunk.text,
                    "start_timestamp": chunk.start_timestamp,
                    "end_timestamp": chunk.end_timestamp,
                    "word_count": chunk.word_count,
                    "token_count": result.token_count,
                    "embedding": result.embedding,
                }
            )

        path = self.path_for(video_id)
        write_json(
            path,
            {
                "video_id": video_id,
                "model": model,
                "language": transcript.language,
                "duration_seconds": transcript.duration,
                "chunk_count": len(records),
                "total_tokens": embeddings.total_tokens,
                "estimated_cost": embeddings.estimated_cost,
                "stored_at": datetime.now().isoformat(timespec="seconds"),
                "transcript": transcript.to_dict(),
                "chunks": records,
            },
        )
        logger.info("Stored %d chunks for %s in %s", len(records), video_id, path)
        return path

    def load(self, video_id: str) -> dict[str, Any]:
        return read_json(self.path_for(video_id))

    def verify(self, video_id: str) -> dict[str, Any]:
        """Count stored chunks with and without a vector.

        Returns:
            Dict with ``total``, ``embedded``, ``missing`` and the
            ``missing_indices`` of chunks that have no vector
        """
        records = self.load(video_id)["chunks"]
        missing = [r["chunk_index"] for r in records if not r.get("embedding")]
        return {
            "total": len(records),
            "embedded": len(records) - len(missing),
            "missing": len(missing),
            "missing_indices": missing,
        }

    def chunk_by_index(self, video_id: str, chunk_index: int) -> dict[str, Any] | None:
        for record in self.load(video_id)["chunks"]:
            if record["chunk_index"] == chunk_index:
                return record
        return None

    def chunks_in_range(self, video_id: str, start: float, end: float) -> list[dict[str, Any]]:
        """Chunks lying entirely within ``[start, end]`` seconds, in index order."""
        records = [
            r
            for r in self.load(video_id)["chunks"]
            if r["start_timestamp"] >= start and r["end_timestamp"] <= end
        ]
        return sorted(records, key=lambda r: r["chunk_index"])

    def regenerate_embeddings(
        self,
        video_id: str,
        batcher: EmbeddingBatcher,
        cancel: CancelToken | None = None,
    ) -> EmbeddingBatchResult:
        """Re-embed a stored video's chunks with ``batcher`` and rewrite its file.

        Used after an embedding model change; the transcript and chunk
        boundaries are kept as stored.

        Raises:
            FileNotFoundError: If nothing is stored for ``video_id``
            EmbeddingError: If a chunk comes back without a vector
        """
        document = self.load(video_id)
        records = sorted(document["chunks"], key=lambda r: r["chunk_index"])
        chunks = [
            TextChunk(
                text=r["text"],
                index=r["chunk_index"],
                start_timestamp=r["start_timestamp"],
                end_timestamp=r["end_timestamp"],
                word_count=r["word_count"],
            )
            for r in records
        ]

        embeddings = batcher.generate_embeddings(chunks, cancel=cancel)
        vectors = {e.chunk_index: e for e in embeddings.embeddings}
        for record in records:
            result = vectors.get(record["chunk_index"])
            if result is None:
                raise EmbeddingError(f"Chunk {record['chunk_index']} has no embedding")
            record["embedding"] = result.embedding
            record["token_count"] = result.token_count

        document.update(
            {
                "model": batcher.options.model,
                "chunks": records,
                "total_tokens": embeddings.total_tokens,
                "estimated_cost": embeddings.estimated_cost,
                "stored_at": datetime.now().isoformat(timespec="seconds"),
            }
        )
        write_json(self.path_for(video_id), document)
        logger.info(
            "Regenerated %d embeddings for %s with %s", len(records), video_id, batcher.options.model
        )
        return embeddings


class PipelineOrchestrator:
    """Sequences the pipeline stages for one video at a time.

    Instances hold no per-run state, so one orchestrator may serve several
    concurrent runs; they share only the embedding cache.
    """

    def __init__(
        self,
        config: CuepointConfig | None = None,
        transcriber: Callable[..., Transcript] | None = None,
        batcher: EmbeddingBatcher | None = None,
        store: JsonChunkStore | None = None,
        cancel: CancelToken | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or CuepointConfig()
        self.cancel = cancel or CancelToken()
        self.transcriber = transcriber or Transcriber(self.config.transcription, self.config.retry)
        self.chunker = TranscriptChunker(self.config.chunking)

        if batcher is None:
            cache_dir = self.config.pipeline.cache_dir
            cache = FileEmbeddingCache(cache_dir) if cache_dir else InMemoryEmbeddingCache()
            batcher = EmbeddingBatcher(
                cache=cache,
                options=self.config.embedding,
                retry=self.config.retry,
                sleep=sleep,
            )
        self.batcher = batcher
        self.store = store or JsonChunkStore(self.config.pipeline.output_dir)

        self._sleep = sleep
        self._stage_retry = self.config.retry.model_copy(
            update={"max_attempts": self.config.pipeline.stage_attempts}
        )

    def run(
        self,
        video_path: Path,
        video_id: str | None = None,
        cancel: CancelToken | None = None,
    ) -> PipelineResult:
        """Process one video end to end.

        Never raises for pipeline errors; the returned PipelineResult carries
        the terminal status, the stage reached and the error message.
        """
        video_id = video_id or video_path.stem
        cancel = cancel or self.cancel
        audio = self.config.audio

        stage = "extract"
        audio_path: Path | None = None
        audio_chunks: list[AudioChunk] = []

        try:
            cancel.raise_if_cancelled()
            validate_video_file(video_path)
            target = work_audio_path(video_path, audio.codec)
            audio_path = self._retry_toolchain(
                lambda: self._extract(video_path, target), f"Audio extraction for {video_id}"
            )

            stage = "split"
            cancel.raise_if_cancelled()
            extracted = audio_path
            audio_chunks = self._retry_toolchain(
                lambda: split_audio(
                    extracted,
                    max_size_mb=audio.max_segment_mb,
                    timeout=audio.timeout_seconds,
                    cancel=cancel,
                ),
                f"Audio split for {video_id}",
            )

            stage = "transcribe"
            cancel.raise_if_cancelled()
            transcript = self.transcriber(audio_chunks, cancel=cancel)
            self._cleanup(audio_path, audio_chunks)
            audio_path, audio_chunks = None, []

            stage = "chunk"
            cancel.raise_if_cancelled()
            chunks = self.chunker.chunk(transcript)
            if not chunks:
                raise ChunkingError("Transcript produced no text chunks")
            self.chunker.validate(chunks)

            stage = "embed"
            embeddings = self.batcher.generate_embeddings(chunks, cancel=cancel)

            stage = "persist"
            cancel.raise_if_cancelled()
            output_path = self.store.save(
                video_id, transcript, chunks, embeddings, model=self.batcher.options.model
            )

        except PipelineCancelled as e:
            logger.warning("Pipeline for %s cancelled during %s", video_id, stage)
            return PipelineResult(video_id=video_id, status="cancelled", stage=stage, message=str(e))
        except Exception as e:
            logger.error("Pipeline for %s failed during %s: %s", video_id, stage, e)
            return PipelineResult(video_id=video_id, status="failed", stage=stage, message=str(e))
        finally:
            self._cleanup(audio_path, audio_chunks)

        return PipelineResult(
            video_id=video_id,
            status="completed",
            stage=stage,
            chunk_count=len(chunks),
            total_tokens=embeddings.total_tokens,
            estimated_cost=embeddings.estimated_cost,
            output_path=output_path,
        )

    def _extract(self, video_path: Path, target: Path) -> Path:
        audio_path = extract_audio(video_path, self.config.audio, output_path=target)
        if not validate_audio_file(audio_path):
            remove_file(audio_path)
            raise ExtractionFailed(f"Extracted audio {audio_path} has no usable duration")
        return audio_path

    def _retry_toolchain(self, fn: Callable[[], Any], description: str) -> Any:
        return self._stage_retry.run(
            fn,
            retryable=lambda e: isinstance(e, TOOLCHAIN_ERRORS),
            sleep=self._sleep,
            description=description,
        )

    def _cleanup(self, audio_path: Path | None, audio_chunks: list[AudioChunk]) -> None:
        """Remove split chunks and extracted audio; errors are only logged."""
        cleanup_audio_chunks(audio_chunks)
        if audio_path is not None:
            try:
                remove_file(audio_path)
            except OSError as e:
                logger.error("Failed to remove extracted audio %s: %s", audio_path, e)


def process_videos(
    video_paths: Sequence[Path],
    max_concurrent: int = 2,
    orchestrator: PipelineOrchestrator | None = None,
    cancel: CancelToken | None = None,
) -> list[PipelineResult]:
    """Run independent videos through the pipeline with bounded concurrency.

    All runs go through one orchestrator, so they share its embedding cache
    and nothing else. Each run extracts to its own audio file and videos
    with the same stem get distinct ids (see video_ids_for).

    Returns:
        One PipelineResult per input path, in input order
    """
    if not video_paths:
        return []
    orchestrator = orchestrator or PipelineOrchestrator()
    video_ids = video_ids_for(video_paths)

    with ThreadPoolExecutor(max_workers=max(1, max_concurrent)) as pool:
        futures = [
            pool.submit(orchestrator.run, path, video_id, cancel)
            for path, video_id in zip(video_paths, video_ids)
        ]
        return [f.result() for f in futures]
