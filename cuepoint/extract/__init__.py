"""
cuepoint.extract - Audio extraction and splitting.

Pipeline Stage 1: Extract a 16kHz mono track from each video with FFmpeg,
then split it into chunks that fit the transcription upload limit.
"""

from __future__ import annotations
