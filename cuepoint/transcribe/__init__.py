"""
cuepoint.transcribe - Whisper transcription engine.

Pipeline Stage 2: Transcribe audio chunks through the Whisper API (litellm)
or a local backend and merge them into one source-anchored transcript.
"""

from __future__ import annotations
