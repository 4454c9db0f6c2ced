"""
cuepoint.embed.batcher - Batched, cached, rate-limited embedding generation.

Chunks are embedded in fixed-size batches with one backend call per batch.
Cached vectors are reused, identical texts within a batch are sent once,
and a fixed delay separates consecutive batches to respect rate limits.
Token usage is estimated from text length for cost accounting.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence

from cuepoint.config import EmbeddingOptions
from cuepoint.embed.cache import EmbeddingCache, InMemoryEmbeddingCache, embedding_cache_key
from cuepoint.embed.client import EmbeddingClient
from cuepoint.exceptions import EmbeddingFailed
from cuepoint.models import EmbeddingBatchResult, EmbeddingResult, TextChunk
from cuepoint.retry import RetryPolicy
from cuepoint.utils import batched

logger = logging.getLogger(__name__)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Approximate token count from character length."""
    return math.ceil(len(text) / chars_per_token)


def estimate_cost(chunks: Sequence[TextChunk], options: EmbeddingOptions | None = None) -> float:
    """Estimated USD cost of embedding ``chunks``; makes no network call."""
    options = options or EmbeddingOptions()
    total_tokens = sum(estimate_tokens(c.text, options.chars_per_token) for c in chunks)
    return (total_tokens / 1000) * options.cost_per_1k_tokens


class EmbeddingBatcher:
    """Embeds TextChunks in order with caching, retries and inter-batch delay."""

    def __init__(
        self,
        client: EmbeddingClient | None = None,
        cache: EmbeddingCache | None = None,
        options: EmbeddingOptions | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.options = options or EmbeddingOptions()
        self.client = client or EmbeddingClient(self.options)
        self.cache = cache if cache is not None else InMemoryEmbeddingCache()
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    def estimate_cost(self, chunks: Sequence[TextChunk]) -> float:
        return estimate_cost(chunks, self.options)

    def generate_embeddings(
        self,
        chunks: Sequence[TextChunk],
        options: EmbeddingOptions | None = None,
        cancel=None,
    ) -> EmbeddingBatchResult:
        """Embed all chunks.

        Args:
            chunks: Chunks to embed, in order
            options: Per-call override of the batcher's options
            cancel: Optional CancelToken checked before each batch

        Returns:
            EmbeddingBatchResult with one EmbeddingResult per chunk, in input order

        Raises:
            EmbeddingFailed: If a batch fails after its retry budget. Earlier
                batches' vectors are already cached, so re-running resumes
                from the failed batch.
            PipelineCancelled: If cancelled between batches
        """
        options = options or self.options
        batches = batched(list(chunks), options.batch_size)
        result = EmbeddingBatchResult()

        logger.info(
            "Starting embedding generation: %d chunks in %d batch(es) of %d with %s",
            len(chunks),
            len(batches),
            options.batch_size,
            options.model,
        )

        for number, batch in enumerate(batches):
            if cancel is not None:
                cancel.raise_if_cancelled()
            if number > 0 and options.batch_delay_seconds > 0:
                self._sleep(options.batch_delay_seconds)
                if cancel is not None:
                    cancel.raise_if_cancelled()

            logger.info("Processing embedding batch %d/%d", number + 1, len(batches))
            self._embed_batch(batch, number, len(batches), options, result)

        result.estimated_cost = (result.total_tokens / 1000) * options.cost_per_1k_tokens
        logger.info(
            "Embedding generation completed: %d chunks, %d tokens, $%.6f, "
            "%d API call(s), %d cache hit(s)",
            len(result.embeddings),
            result.total_tokens,
            result.estimated_cost,
            result.api_calls,
            result.cache_hits,
        )
        return result

    def _embed_batch(
        self,
        batch: list[TextChunk],
        number: int,
        total: int,
        options: EmbeddingOptions,
        result: EmbeddingBatchResult,
    ) -> None:
        keys = [embedding_cache_key(chunk.text, options.model) for chunk in batch]
        vectors = list(self.cache.get_many(keys))

        missing: dict[str, list[int]] = {}
        hits = 0
        for position, (chunk, vector) in enumerate(zip(batch, vectors)):
            if vector is None:
                missing.setdefault(chunk.text, []).append(position)
            else:
                hits += 1
        result.cache_hits += hits

        logger.debug(
            "Batch %d cache status: %d cached, %d unique uncached",
            number + 1,
            hits,
            len(missing),
        )

        if missing:
            texts = list(missing)
            try:
                fresh = self.retry.run(
                    lambda: self.client.embed(
                        texts, model=options.model, dimensions=options.dimensions
                    ),
                    sleep=self._sleep,
                    description=f"Embedding batch {number + 1}/{total}",
                )
            except Exception as e:
                failed = sorted(batch[p].index for positions in missing.values() for p in positions)
                raise EmbeddingFailed(
                    f"Embedding batch {number + 1}/{total} failed: {e}",
                    batch_number=number,
                    failed_indices=failed,
                    completed=list(result.embeddings),
                ) from e

            result.api_calls += 1
            for text, vector in zip(texts, fresh, strict=True):
                self._store(embedding_cache_key(text, options.model), vector)
                for position in missing[text]:
                    vectors[position] = vector

        for chunk, vector in zip(batch, vectors, strict=True):
            tokens = estimate_tokens(chunk.text, options.chars_per_token)
            result.total_tokens += tokens
            result.embeddings.append(
                EmbeddingResult(chunk_index=chunk.index, embedding=vector, token_count=tokens)
            )

    def _store(self, key: str, vector: list[float]) -> None:
        try:
            self.cache.set(key, vector)
        except OSError as e:
            logger.warning("Failed to cache embedding %s: %s", key, e)
