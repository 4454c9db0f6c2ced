"""
cuepoint.embed - Embedding generation.

Pipeline Stage 4: Embed chunks in cached, rate-limited batches and account
for token usage and cost.
"""

from __future__ import annotations
