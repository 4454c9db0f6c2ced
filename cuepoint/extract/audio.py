"""
cuepoint.extract.audio - FFmpeg audio extraction and duration probing.

Extracts a mono, fixed-sample-rate audio track from a video file for
transcription, and probes media durations with ffprobe.
"""

from __future__ import annotations

import logging
import math
import subprocess
from pathlib import Path

from cuepoint.config import AudioOptions
from cuepoint.exceptions import DurationProbeFailed, ExtractionFailed
from cuepoint.utils import format_bytes
from cuepoint.validation import require_toolchain

logger = logging.getLogger(__name__)

CODEC_ENCODERS = {
    "wav": "pcm_s16le",
    "mp3": "libmp3lame",
}

DEFAULT_PROBE_TIMEOUT = 60.0


def audio_output_path(video_path: Path, codec: str) -> Path:
    """Sibling path of ``video_path`` with the codec's extension."""
    return video_path.with_suffix(f".{codec}")


def build_extract_command(video_path: Path, output_path: Path, options: AudioOptions) -> list[str]:
    """Build the ffmpeg command for audio extraction."""
    return [
        "ffmpeg",
        "-y",
        "-i",
        str(video_path),
        "-vn",
        "-acodec",
        CODEC_ENCODERS[options.codec],
        "-ar",
        str(options.sample_rate),
        "-ac",
        str(options.channels),
        str(output_path),
    ]


def extract_audio(
    video_path: Path,
    options: AudioOptions | None = None,
    console=None,
    output_path: Path | None = None,
) -> Path:
    """Extract audio from a video file using FFmpeg.

    Args:
        video_path: Path to source video file
        options: Codec, sample rate, channel count and timeout
        console: Optional rich console for output
        output_path: Where to write the audio (default: sibling of the video
            with the codec extension). Must not exist yet.

    Returns:
        Path of the extracted audio file

    Raises:
        ExtractionUnavailable: If ffmpeg or ffprobe is not installed
        ExtractionFailed: If the output path is taken, or FFmpeg fails, times
            out, or writes no output
    """
    options = options or AudioOptions()
    require_toolchain()

    output_path = output_path or audio_output_path(video_path, options.codec)
    if output_path.exists():
        raise ExtractionFailed(f"Refusing to overwrite existing file {output_path}")

    cmd = build_extract_command(video_path, output_path, options)

    logger.info(
        "Extracting audio from %s to %s (%d Hz, %d channel(s))",
        video_path,
        output_path,
        options.sample_rate,
        options.channels,
    )
    if console:
        console.print(f"[dim]  Extracting {options.sample_rate} Hz audio...[/dim]")

    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=options.timeout_seconds,
        )
        if proc.returncode != 0:
            raise ExtractionFailed(f"FFmpeg audio extraction failed: {proc.stderr.strip()}")
        if not output_path.exists():
            raise ExtractionFailed(f"FFmpeg finished but {output_path} was not created")
    except ExtractionFailed:
        _discard_partial(output_path)
        raise
    except subprocess.TimeoutExpired as e:
        _discard_partial(output_path)
        raise ExtractionFailed(
            f"FFmpeg audio extraction timed out after {options.timeout_seconds}s"
        ) from e
    except Exception as e:
        _discard_partial(output_path)
        raise ExtractionFailed(f"Audio extraction failed: {e}") from e

    logger.info(
        "Audio extraction complete: %s (%s)",
        output_path,
        format_bytes(output_path.stat().st_size),
    )
    return output_path


def probe_duration(path: Path, timeout: float = DEFAULT_PROBE_TIMEOUT) -> float:
    """Probe a media file's duration in seconds with ffprobe.

    Raises:
        DurationProbeFailed: If ffprobe fails or returns an unusable value
    """
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise DurationProbeFailed(f"ffprobe timed out after {timeout}s for {path}") from e
    except OSError as e:
        raise DurationProbeFailed(f"ffprobe could not be run for {path}: {e}") from e

    if proc.returncode != 0:
        raise DurationProbeFailed(f"ffprobe failed for {path}: {proc.stderr.strip()}")

    raw = proc.stdout.strip()
    try:
        duration = float(raw)
    except ValueError as e:
        raise DurationProbeFailed(f"Unparsable duration {raw!r} for {path}") from e

    if not math.isfinite(duration) or duration <= 0:
        raise DurationProbeFailed(f"Invalid duration {raw!r} for {path}")

    return duration


def validate_audio_file(path: Path) -> bool:
    """Check that an audio file exists and probes to a positive duration."""
    if not path.is_file():
        return False
    try:
        return probe_duration(path) > 0
    except DurationProbeFailed:
        return False


def _discard_partial(path: Path) -> None:
    """Remove a partially written output; failures are logged, not raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Failed to remove partial audio file %s: %s", path, e)
