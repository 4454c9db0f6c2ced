"""
cuepoint.extract.splitter - Split audio into upload-sized chunks.

Transcription APIs cap upload size (25 MB for Whisper). Files above the cap
are partitioned into equal-duration segments with a lossless stream copy.

The equal-duration partition assumes a roughly constant bitrate. It is an
approximation: individual chunks are not guaranteed to be under the byte
limit when the bitrate varies across the file.
"""

from __future__ import annotations

import logging
import math
import subprocess
from pathlib import Path

from cuepoint.exceptions import CuepointError, PipelineCancelled, SplitFailed
from cuepoint.extract.audio import DEFAULT_PROBE_TIMEOUT, probe_duration
from cuepoint.models import AudioChunk
from cuepoint.utils import BYTES_PER_MB, format_bytes
from cuepoint.validation import require_toolchain

logger = logging.getLogger(__name__)


def chunk_path(audio_path: Path, index: int) -> Path:
    """Path of the ``index``-th chunk file next to the source audio."""
    return audio_path.with_name(f"{audio_path.stem}_chunk{index}{audio_path.suffix}")


def plan_split(file_size: int, total_duration: float, max_size_bytes: int) -> tuple[int, float]:
    """Number of chunks and per-chunk duration for an equal-duration split."""
    chunk_count = math.ceil(file_size / max_size_bytes)
    return chunk_count, total_duration / chunk_count


def split_audio(
    audio_path: Path,
    max_size_mb: float = 25.0,
    timeout: float = 600.0,
    cancel=None,
) -> list[AudioChunk]:
    """Split an audio file into chunks no larger than ``max_size_mb``.

    Args:
        audio_path: Audio file to split
        max_size_mb: Upload size limit in megabytes
        timeout: Per-invocation ffmpeg timeout in seconds
        cancel: Optional CancelToken checked before each chunk

    Returns:
        Ordered AudioChunks covering the whole file. A file already within
        the limit comes back as a single chunk wrapping the original path.

    Raises:
        DurationProbeFailed: If the source duration cannot be probed
        SplitFailed: If any chunk cannot be produced (created chunks are removed)
        PipelineCancelled: If cancelled mid-split (created chunks are removed)
    """
    require_toolchain()
    file_size = audio_path.stat().st_size
    max_size_bytes = int(max_size_mb * BYTES_PER_MB)

    if file_size <= max_size_bytes:
        duration = probe_duration(audio_path, timeout=min(timeout, DEFAULT_PROBE_TIMEOUT))
        return [
            AudioChunk(
                path=audio_path,
                index=0,
                duration_seconds=duration,
                size_bytes=file_size,
            )
        ]

    total_duration = probe_duration(audio_path, timeout=min(timeout, DEFAULT_PROBE_TIMEOUT))
    chunk_count, chunk_duration = plan_split(file_size, total_duration, max_size_bytes)

    logger.info(
        "Splitting %s (%s, %.1fs) into %d chunks of %.1fs",
        audio_path,
        format_bytes(file_size),
        total_duration,
        chunk_count,
        chunk_duration,
    )

    chunks: list[AudioChunk] = []
    for i in range(chunk_count):
        out_path = chunk_path(audio_path, i)
        if out_path.exists():
            cleanup_audio_chunks(chunks, keep=audio_path)
            raise SplitFailed(f"Refusing to overwrite existing file {out_path}")
        last = i == chunk_count - 1
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            chunks.append(_extract_chunk(audio_path, out_path, i, chunk_duration, timeout, last))
        except PipelineCancelled:
            cleanup_audio_chunks(chunks, keep=audio_path)
            _remove_quietly(out_path)
            raise
        except (CuepointError, OSError, subprocess.SubprocessError) as e:
            cleanup_audio_chunks(chunks, keep=audio_path)
            _remove_quietly(out_path)
            raise SplitFailed(f"Failed to split {audio_path} at chunk {i}: {e}") from e

    return chunks


def _extract_chunk(
    audio_path: Path,
    out_path: Path,
    index: int,
    chunk_duration: float,
    timeout: float,
    last: bool = False,
) -> AudioChunk:
    start_time = index * chunk_duration
    cmd = ["ffmpeg", "-y", "-ss", f"{start_time:.3f}"]
    # Last chunk is open-ended and runs to end of file.
    if not last:
        cmd += ["-t", f"{chunk_duration:.3f}"]
    cmd += ["-i", str(audio_path), "-acodec", "copy", str(out_path)]
    proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    if proc.returncode != 0:
        raise SplitFailed(f"FFmpeg exited with {proc.returncode}: {proc.stderr.strip()}")
    if not out_path.exists():
        raise SplitFailed(f"FFmpeg finished but {out_path} was not created")

    size = out_path.stat().st_size
    duration = probe_duration(out_path, timeout=min(timeout, DEFAULT_PROBE_TIMEOUT))
    logger.info(
        "Created audio chunk %d: %s (%.1fs, %s)",
        index,
        out_path,
        duration,
        format_bytes(size),
    )
    return AudioChunk(path=out_path, index=index, duration_seconds=duration, size_bytes=size)


def cleanup_audio_chunks(chunks: list[AudioChunk], keep: Path | None = None) -> int:
    """Delete chunk files from disk.

    Cleanup errors are logged and never raised so they cannot mask the error
    that triggered the cleanup.

    Args:
        chunks: Chunks to remove
        keep: Path that must survive (the original audio for single-chunk splits)

    Returns:
        Number of files removed
    """
    removed = 0
    for chunk in chunks:
        if keep is not None and chunk.path == keep:
            continue
        if _remove_quietly(chunk.path):
            removed += 1
            logger.debug("Cleaned up audio chunk %s", chunk.path)
    return removed


def _remove_quietly(path: Path) -> bool:
    try:
        if path.exists():
            path.unlink()
            return True
    except OSError as e:
        logger.error("Failed to clean up audio chunk %s: %s", path, e)
    return False
