"""
cuepoint.transcribe.engine - Whisper transcription engine.

Transcribes audio chunks through the Whisper API (via litellm) or a local
backend (faster-whisper, mlx-whisper) and merges per-chunk results into one
Transcript whose timestamps are seconds from the start of the source video.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from cuepoint.config import TranscriptionOptions
from cuepoint.exceptions import TranscriptionError
from cuepoint.io import read_json, write_json
from cuepoint.models import AudioChunk, Transcript, TranscriptSegment, TranscriptWord
from cuepoint.retry import RetryPolicy

logger = logging.getLogger(__name__)


def transcribe_audio(
    audio_path: Path,
    options: TranscriptionOptions | None = None,
    retry: RetryPolicy | None = None,
    console=None,
) -> Transcript:
    """Transcribe one audio file.

    Args:
        audio_path: Path to audio file (16kHz mono WAV recommended)
        options: Backend, model, language and timeout
        retry: Retry policy for the API backend
        console: Optional rich console for output

    Returns:
        Transcript with segment timestamps relative to the file start

    Raises:
        TranscriptionError: If transcription fails
    """
    options = options or TranscriptionOptions()

    if not audio_path.exists():
        raise TranscriptionError(f"Audio file not found: {audio_path}")

    if console:
        console.print(f"[dim]  Transcribing {audio_path.name} with {options.model}...[/dim]")

    try:
        if options.backend == "api":
            result = _transcribe_api(audio_path, options, retry or RetryPolicy())
        elif options.backend == "faster":
            result = _transcribe_faster(audio_path, options)
        elif options.backend == "mlx":
            result = _transcribe_mlx(audio_path, options)
        else:
            raise TranscriptionError(f"Unknown backend: {options.backend}")

        return _parse_whisper_result(result, options.language)

    except TranscriptionError:
        raise
    except Exception as e:
        raise TranscriptionError(f"Transcription failed: {e}") from e


def _transcribe_api(
    audio_path: Path,
    options: TranscriptionOptions,
    retry: RetryPolicy,
) -> dict[str, Any]:
    """Transcribe using the hosted Whisper API through litellm."""
    try:
        import litellm
    except ImportError as e:
        raise TranscriptionError("litellm not installed. Install with: pip install litellm") from e

    litellm.telemetry = False

    kwargs: dict[str, Any] = {
        "model": options.model,
        "response_format": "verbose_json",
        "timestamp_granularities": ["segment"],
        "timeout": options.timeout_seconds,
        "temperature": 0,
    }
    if options.language:
        kwargs["language"] = options.language
    if options.prompt:
        kwargs["prompt"] = options.prompt

    def call() -> Any:
        # a fresh handle per attempt; a retried upload must start at byte 0
        with open(audio_path, "rb") as f:
            return litellm.transcription(file=f, **kwargs)

    response = retry.run(call, description=f"Transcription of {audio_path.name}")
    return _as_dict(response)


def _transcribe_faster(audio_path: Path, options: TranscriptionOptions) -> dict[str, Any]:
    """Transcribe using faster-whisper."""
    try:
        from faster_whisper import WhisperModel
    except ImportError as e:
        raise TranscriptionError(
            "faster-whisper not installed. Install with: pip install faster-whisper"
        ) from e

    model_instance = WhisperModel(options.model, device="auto", compute_type="auto")

    kwargs: dict[str, Any] = {"word_timestamps": True}
    if options.language:
        kwargs["language"] = options.language

    segments, info = model_instance.transcribe(str(audio_path), **kwargs)

    result: dict[str, Any] = {
        "language": info.language,
        "duration": info.duration,
        "segments": [],
    }
    for segment in segments:
        result["segments"].append(
            {
                "start": segment.start,
                "end": segment.end,
                "text": segment.text,
                "words": [
                    {
                        "word": word.word,
                        "start": word.start,
                        "end": word.end,
                        "probability": word.probability,
                    }
                    for word in segment.words or []
                ],
            }
        )
    return result


def _transcribe_mlx(audio_path: Path, options: TranscriptionOptions) -> dict[str, Any]:
    """Transcribe using mlx-whisper on Apple Silicon."""
    try:
        import mlx_whisper
    except ImportError as e:
        raise TranscriptionError(
            "mlx-whisper not installed. Install with: pip install mlx-whisper"
        ) from e

    kwargs: dict[str, Any] = {
        "path_or_hf_repo": f"mlx-community/whisper-{options.model}-mlx",
        "word_timestamps": True,
    }
    if options.language:
        kwargs["language"] = options.language

    return mlx_whisper.transcribe(str(audio_path), **kwargs)


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(vars(obj))


def _parse_whisper_result(result: dict[str, Any], language: str | None) -> Transcript:
    """Parse a Whisper-style result into a Transcript."""
    segments = []
    for i, raw in enumerate(result.get("segments") or []):
        seg = _as_dict(raw)
        start = float(seg.get("start", 0))
        end = max(float(seg.get("end", start)), start)

        words = []
        for raw_word in seg.get("words") or []:
            w = _as_dict(raw_word)
            w_start = float(w.get("start", start))
            words.append(
                TranscriptWord(
                    word=w.get("word", w.get("text", "")).strip(),
                    start=w_start,
                    end=max(float(w.get("end", w_start)), w_start),
                    probability=w.get("probability"),
                )
            )

        segments.append(
            TranscriptSegment(
                id=i,
                start=start,
                end=end,
                text=seg.get("text", "").strip(),
                words=tuple(words),
            )
        )

    duration = result.get("duration")
    if duration is None:
        duration = segments[-1].end if segments else 0.0

    text = result.get("text")
    if not text:
        text = " ".join(s.text for s in segments)

    return Transcript(
        text=text.strip(),
        language=result.get("language") or language or "unknown",
        duration=float(duration),
        segments=tuple(segments),
    )


def merge_transcripts(
    transcripts: Sequence[Transcript],
    offsets: Sequence[float] | None = None,
) -> Transcript:
    """Merge consecutive per-chunk transcripts into one.

    Args:
        transcripts: Transcripts in audio order
        offsets: Start time of each transcript within the source. Defaults to
            the cumulative duration of the preceding transcripts.

    Raises:
        TranscriptionError: If there is nothing to merge
    """
    if not transcripts:
        raise TranscriptionError("No transcripts to merge")

    if len(transcripts) == 1 and not offsets:
        return transcripts[0]

    if offsets is None:
        offsets = []
        elapsed = 0.0
        for t in transcripts:
            offsets.append(elapsed)
            elapsed += t.duration
    elif len(offsets) != len(transcripts):
        raise TranscriptionError(
            f"Got {len(offsets)} offsets for {len(transcripts)} transcripts"
        )

    segments: list[TranscriptSegment] = []
    for transcript, offset in zip(transcripts, offsets):
        for seg in transcript.segments:
            segments.append(
                TranscriptSegment(
                    id=len(segments),
                    start=seg.start + offset,
                    end=seg.end + offset,
                    text=seg.text,
                    words=tuple(
                        TranscriptWord(
                            word=w.word,
                            start=w.start + offset,
                            end=w.end + offset,
                            probability=w.probability,
                        )
                        for w in seg.words
                    ),
                )
            )

    return Transcript(
        text=" ".join(t.text for t in transcripts if t.text),
        language=transcripts[0].language,
        duration=offsets[-1] + transcripts[-1].duration,
        segments=tuple(segments),
    )


def transcribe_chunks(
    chunks: Sequence[AudioChunk],
    options: TranscriptionOptions | None = None,
    retry: RetryPolicy | None = None,
    cancel=None,
    console=None,
) -> Transcript:
    """Transcribe audio chunks in order and merge them.

    Each chunk's timestamps are shifted by the probed duration of the chunks
    before it, so the merged transcript is anchored to the source video.
    """
    if not chunks:
        raise TranscriptionError("No audio chunks to transcribe")

    transcripts: list[Transcript] = []
    offsets: list[float] = []
    elapsed = 0.0
    for chunk in sorted(chunks, key=lambda c: c.index):
        if cancel is not None:
            cancel.raise_if_cancelled()
        logger.info("Transcribing audio chunk %d/%d", chunk.index + 1, len(chunks))
        transcripts.append(transcribe_audio(chunk.path, options, retry, console=console))
        offsets.append(elapsed)
        elapsed += chunk.duration_seconds

    merged = merge_transcripts(transcripts, offsets)
    logger.info(
        "Transcription complete: %d segments, %d words, %.1fs",
        len(merged.segments),
        merged.word_count,
        merged.duration,
    )
    return merged


class Transcriber:
    """Callable transcription collaborator used by the pipeline."""

    def __init__(self, options: TranscriptionOptions | None = None, retry: RetryPolicy | None = None):
        self.options = options or TranscriptionOptions()
        self.retry = retry or RetryPolicy()

    def __call__(self, chunks: Sequence[AudioChunk], cancel=None) -> Transcript:
        return transcribe_chunks(chunks, self.options, self.retry, cancel=cancel)


def load_transcript(path: Path) -> Transcript:
    """Read a transcript JSON file.

    Raises:
        TranscriptionError: If the file is missing or malformed
    """
    try:
        return Transcript.from_dict(read_json(path))
    except FileNotFoundError as e:
        raise TranscriptionError(f"Transcript not found: {path}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptionError(f"Malformed transcript {path}: {e}") from e


def save_transcript(path: Path, transcript: Transcript) -> None:
    """Write a transcript JSON file."""
    write_json(path, transcript.to_dict())

