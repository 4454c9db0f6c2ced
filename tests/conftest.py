"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

from cuepoint.models import Transcript, TranscriptSegment

# Keep Rich from wrapping CLI output at the default 80 columns, so long
# tmp paths do not split the messages the CLI tests look for.
os.environ.setdefault("COLUMNS", "200")
# Use litellm's bundled model cost map; its background remote fetch can race
# the library's own import when there is no network.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")


def build_transcript(
    texts: list[str],
    seconds_per_segment: float = 5.0,
    language: str = "en",
) -> Transcript:
    """Build a transcript with back-to-back segments of equal length."""
    segments = tuple(
        TranscriptSegment(
            id=i,
            start=i * seconds_per_segment,
            end=(i + 1) * seconds_per_segment,
            text=text,
        )
        for i, text in enumerate(texts)
    )
    return Transcript(
        text=" ".join(texts),
        language=language,
        duration=len(texts) * seconds_per_segment,
        segments=segments,
    )


def sentence_texts(segments: int, words_per_segment: int = 10, punctuate: bool = True) -> list[str]:
    """Segment texts of unique words, each segment one sentence when punctuated."""
    texts = []
    for s in range(segments):
        words = [f"s{s}w{w}" for w in range(words_per_segment)]
        if punctuate:
            words[-1] += "."
        texts.append(" ".join(words))
    return texts


@pytest.fixture
def make_transcript():
    """Factory fixture wrapping build_transcript."""
    return build_transcript


@pytest.fixture
def long_transcript() -> Transcript:
    """1600 words in 160 five-second segments of one sentence each."""
    return build_transcript(sentence_texts(160))


@pytest.fixture
def sample_whisper_result() -> dict:
    """Return a verbose_json style Whisper response."""
    return {
        "text": " When I was young, we went to the river. It was cold.",
        "language": "en",
        "duration": 6.0,
        "segments": [
            {
                "id": 0,
                "start": 0.0,
                "end": 3.5,
                "text": " When I was young, we went to the river.",
                "words": [
                    {"word": " When", "start": 0.0, "end": 0.3, "probability": 0.98},
                    {"word": " I", "start": 0.35, "end": 0.4, "probability": 0.99},
                ],
            },
            {
                "id": 1,
                "start": 3.5,
                "end": 6.0,
                "text": " It was cold.",
            },
        ],
    }


class FakeToolchain:
    """Stands in for ffmpeg/ffprobe behind subprocess.run.

    ffmpeg calls write a small file at the output path. ffprobe reports the
    ``-t`` duration a chunk was cut with, the remainder after ``-ss`` for an
    open-ended cut, or ``duration`` for anything else.
    """

    def __init__(self, duration: float = 120.0) -> None:
        self.duration = duration
        self.calls: list[list[str]] = []
        self.durations: dict[str, float] = {}
        self.probe_output: str | None = None
        self.ffmpeg_returncode = 0
        self.fail_ffmpeg_after: int | None = None
        self.write_partial = True
        self.timeout = False

    @property
    def ffmpeg_calls(self) -> list[list[str]]:
        return [c for c in self.calls if c[0] == "ffmpeg"]

    def __call__(self, cmd: list[str], **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(cmd)

        if cmd[-1] == "-version":
            stdout = f"{Path(cmd[0]).name} version 6.1.1 Copyright (c) the FFmpeg developers\n"
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

        if cmd[0] == "ffprobe":
            stdout = self.probe_output
            if stdout is None:
                stdout = f"{self.durations.get(cmd[-1], self.duration)}\n"
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

        out = Path(cmd[-1])
        if self.write_partial:
            out.write_bytes(b"\0" * 1024)
        if self.timeout:
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

        failing = self.fail_ffmpeg_after is not None and len(self.ffmpeg_calls) > self.fail_ffmpeg_after
        if self.ffmpeg_returncode != 0 or failing:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="ffmpeg exploded")

        if not out.exists():
            out.write_bytes(b"\0" * 1024)
        if "-t" in cmd:
            self.durations[str(out)] = float(cmd[cmd.index("-t") + 1])
        elif "-ss" in cmd:
            source = self.durations.get(cmd[cmd.index("-i") + 1], self.duration)
            self.durations[str(out)] = source - float(cmd[cmd.index("-ss") + 1])
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def toolchain(monkeypatch: pytest.MonkeyPatch) -> FakeToolchain:
    """Pretend ffmpeg and ffprobe are installed and route their calls to a fake."""
    fake = FakeToolchain()
    monkeypatch.setattr("cuepoint.validation.shutil.which", lambda tool: f"/usr/bin/{tool}")
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def no_toolchain(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Pretend ffmpeg is missing; records any subprocess call that slips through."""
    calls: list[list[str]] = []

    def record(cmd, **kwargs):
        calls.append(cmd)
        raise AssertionError("subprocess must not run without the toolchain")

    monkeypatch.setattr("cuepoint.validation.shutil.which", lambda tool: None)
    monkeypatch.setattr(subprocess, "run", record)
    return calls


class FakeEmbeddingClient:
    """Deterministic embedding backend that records every call."""

    def __init__(self, dimensions: int = 3, fail_from_call: int | None = None, error=None):
        self.dimensions = dimensions
        self.calls: list[list[str]] = []
        self.fail_from_call = fail_from_call
        self.error = error or RuntimeError("rate limit exceeded")

    def embed(self, texts, model=None, dimensions=None):
        self.calls.append(list(texts))
        if self.fail_from_call is not None and len(self.calls) > self.fail_from_call:
            raise self.error
        return [[float(len(t)), float(len(self.calls)), 0.5][: self.dimensions] for t in texts]


@pytest.fixture
def fake_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()
