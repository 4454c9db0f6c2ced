"""Tests for cuepoint.models module."""

from __future__ import annotations

import pytest

from cuepoint.models import TextChunk, Transcript, TranscriptSegment


class TestTranscriptSegment:
    def test_end_before_start_rejected(self) -> None:
        with pytest.raises(ValueError):
            TranscriptSegment(id=0, start=5.0, end=4.0, text="x")

    def test_zero_length_allowed(self) -> None:
        assert TranscriptSegment(id=0, start=5.0, end=5.0, text="x").end == 5.0

    def test_from_dict_with_words(self) -> None:
        segment = TranscriptSegment.from_dict(
            {
                "id": 3,
                "start": 1,
                "end": 2,
                "text": "hi there",
                "words": [{"word": "hi", "start": 1.0, "end": 1.4}],
            }
        )
        assert segment.id == 3
        assert segment.start == 1.0
        assert segment.words[0].word == "hi"
        assert segment.words[0].probability is None


class TestTranscript:
    def test_word_count(self, make_transcript) -> None:
        assert make_transcript(["one two", "three"]).word_count == 3

    def test_from_dict_fills_text_and_duration(self) -> None:
        transcript = Transcript.from_dict(
            {"segments": [{"id": 0, "start": 0.0, "end": 4.0, "text": " Hello. "}]}
        )
        assert transcript.text == "Hello."
        assert transcript.duration == 4.0
        assert transcript.language == "unknown"

    def test_to_dict_round_trip(self, make_transcript) -> None:
        transcript = make_transcript(["a b.", "c d."])
        assert Transcript.from_dict(transcript.to_dict()) == transcript


class TestTextChunk:
    def test_from_dict_counts_words(self) -> None:
        chunk = TextChunk.from_dict(
            {"text": "a b c", "index": 0, "start_timestamp": 0, "end_timestamp": 3}
        )
        assert chunk.word_count == 3
        assert chunk.end_timestamp == 3.0

    def test_to_dict(self) -> None:
        chunk = TextChunk(text="a", index=1, start_timestamp=2.0, end_timestamp=3.0, word_count=1)
        assert chunk.to_dict() == {
            "text": "a",
            "index": 1,
            "start_timestamp": 2.0,
            "end_timestamp": 3.0,
            "word_count": 1,
        }
