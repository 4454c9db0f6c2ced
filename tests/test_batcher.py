"""Tests for cuepoint.embed.batcher module."""

from __future__ import annotations

import pytest
from conftest import FakeEmbeddingClient

from cuepoint.config import EmbeddingOptions
from cuepoint.embed.batcher import EmbeddingBatcher, estimate_cost, estimate_tokens
from cuepoint.embed.cache import InMemoryEmbeddingCache, embedding_cache_key
from cuepoint.exceptions import EmbeddingFailed, PipelineCancelled
from cuepoint.models import TextChunk
from cuepoint.pipeline import CancelToken
from cuepoint.retry import RetryPolicy

OPTIONS = EmbeddingOptions(dimensions=3, batch_size=2, batch_delay_seconds=0.5)
NO_BACKOFF = RetryPolicy(max_attempts=2, base_delay=0.0, jitter=0.0)


def make_chunks(*texts: str) -> list[TextChunk]:
    return [
        TextChunk(
            text=text,
            index=i,
            start_timestamp=i * 10.0,
            end_timestamp=i * 10.0 + 10.0,
            word_count=len(text.split()),
        )
        for i, text in enumerate(texts)
    ]


class Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_batcher(client, cache=None, sleep=None, retry=NO_BACKOFF) -> EmbeddingBatcher:
    return EmbeddingBatcher(
        client=client,
        cache=cache if cache is not None else InMemoryEmbeddingCache(),
        options=OPTIONS,
        retry=retry,
        sleep=sleep or Sleeper(),
    )


class TestEstimates:
    def test_tokens_round_up(self) -> None:
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0

    def test_empty_cost_is_zero(self) -> None:
        assert estimate_cost([]) == 0

    def test_cost_monotonic_in_chunks(self) -> None:
        chunks = make_chunks("one two three", "four five six", "seven")
        costs = [estimate_cost(chunks[:n]) for n in range(len(chunks) + 1)]
        assert costs == sorted(costs)
        assert costs[-1] > 0

    def test_cost_uses_rate(self) -> None:
        chunks = make_chunks("x" * 4000)
        options = EmbeddingOptions(cost_per_1k_tokens=0.0001)
        assert estimate_cost(chunks, options) == pytest.approx(0.0001)


class TestGenerateEmbeddings:
    def test_one_call_per_batch_in_order(self, fake_client: FakeEmbeddingClient) -> None:
        chunks = make_chunks("a", "bb", "ccc", "dddd", "eeeee")
        result = make_batcher(fake_client).generate_embeddings(chunks)

        assert [e.chunk_index for e in result.embeddings] == [0, 1, 2, 3, 4]
        assert fake_client.calls == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]
        assert result.api_calls == 3
        assert result.cache_hits == 0
        assert all(len(e.embedding) == 3 for e in result.embeddings)

    def test_delay_between_batches(self, fake_client: FakeEmbeddingClient) -> None:
        sleeper = Sleeper()
        chunks = make_chunks("a", "b", "c", "d", "e")
        make_batcher(fake_client, sleep=sleeper).generate_embeddings(chunks)

        assert sleeper.delays == [0.5, 0.5]

    def test_duplicate_text_sent_once(self, fake_client: FakeEmbeddingClient) -> None:
        chunks = make_chunks("same words", "same words")
        result = make_batcher(fake_client).generate_embeddings(chunks)

        assert fake_client.calls == [["same words"]]
        assert result.embeddings[0].embedding == result.embeddings[1].embedding
        assert [e.chunk_index for e in result.embeddings] == [0, 1]

    def test_repeated_text_across_batches_sent_once(self, fake_client: FakeEmbeddingClient) -> None:
        result = make_batcher(fake_client).generate_embeddings(make_chunks("a", "b", "a"))

        assert fake_client.calls == [["a", "b"]]
        assert result.api_calls == 1
        assert result.cache_hits == 1
        assert result.embeddings[2].embedding == result.embeddings[0].embedding

    def test_second_run_served_from_cache(self, fake_client: FakeEmbeddingClient) -> None:
        cache = InMemoryEmbeddingCache()
        chunks = make_chunks("a", "bb", "ccc")
        first = make_batcher(fake_client, cache=cache).generate_embeddings(chunks)

        second_client = FakeEmbeddingClient()
        second = make_batcher(second_client, cache=cache).generate_embeddings(chunks)

        assert second_client.calls == []
        assert second.api_calls == 0
        assert second.cache_hits == 3
        assert [e.embedding for e in second.embeddings] == [e.embedding for e in first.embeddings]

    def test_partial_cache_hit(self, fake_client: FakeEmbeddingClient) -> None:
        cache = InMemoryEmbeddingCache()
        cache.set(embedding_cache_key("a", OPTIONS.model), [9.0, 9.0, 9.0])

        result = make_batcher(fake_client, cache=cache).generate_embeddings(make_chunks("a", "bb"))

        assert fake_client.calls == [["bb"]]
        assert result.cache_hits == 1
        assert result.embeddings[0].embedding == [9.0, 9.0, 9.0]
        assert len(cache) == 2

    def test_tokens_and_cost(self, fake_client: FakeEmbeddingClient) -> None:
        chunks = make_chunks("x" * 8, "y" * 5)
        result = make_batcher(fake_client).generate_embeddings(chunks)

        assert result.total_tokens == 2 + 2
        assert result.estimated_cost == pytest.approx(4 / 1000 * OPTIONS.cost_per_1k_tokens)
        assert [e.token_count for e in result.embeddings] == [2, 2]

    def test_empty_input(self, fake_client: FakeEmbeddingClient) -> None:
        result = make_batcher(fake_client).generate_embeddings([])
        assert result.embeddings == []
        assert result.estimated_cost == 0
        assert fake_client.calls == []


class TestBatchFailures:
    def test_transient_error_retried(self) -> None:
        class FlakyClient(FakeEmbeddingClient):
            def embed(self, texts, model=None, dimensions=None):
                if not self.calls:
                    self.calls.append(list(texts))
                    raise ConnectionError("connection reset")
                return super().embed(texts, model, dimensions)

        client = FlakyClient()
        result = make_batcher(client).generate_embeddings(make_chunks("a", "b"))

        assert len(client.calls) == 2
        assert result.api_calls == 1
        assert len(result.embeddings) == 2

    def test_exhausted_retries_raise_embedding_failed(self) -> None:
        client = FakeEmbeddingClient(fail_from_call=1)
        chunks = make_chunks("a", "b", "c", "d", "e")

        with pytest.raises(EmbeddingFailed) as exc_info:
            make_batcher(client).generate_embeddings(chunks)

        error = exc_info.value
        assert error.batch_number == 1
        assert error.failed_indices == [2, 3]
        assert [e.chunk_index for e in error.completed] == [0, 1]
        assert len(client.calls) == 1 + NO_BACKOFF.max_attempts

    def test_non_retryable_error_not_retried(self) -> None:
        client = FakeEmbeddingClient(fail_from_call=0, error=ValueError("invalid input"))

        with pytest.raises(EmbeddingFailed):
            make_batcher(client).generate_embeddings(make_chunks("a"))

        assert len(client.calls) == 1

    def test_completed_batches_cached_before_failure(self) -> None:
        cache = InMemoryEmbeddingCache()
        client = FakeEmbeddingClient(fail_from_call=1)

        with pytest.raises(EmbeddingFailed):
            make_batcher(client, cache=cache).generate_embeddings(make_chunks("a", "b", "c"))

        assert cache.get(embedding_cache_key("a", OPTIONS.model)) is not None
        assert cache.get(embedding_cache_key("c", OPTIONS.model)) is None

    def test_cancelled_before_next_batch(self, fake_client: FakeEmbeddingClient) -> None:
        token = CancelToken()
        token.cancel()

        with pytest.raises(PipelineCancelled):
            make_batcher(fake_client).generate_embeddings(make_chunks("a", "b"), cancel=token)

        assert fake_client.calls == []

    def test_cancel_skips_pending_delay(self) -> None:
        token = CancelToken()

        class CancellingClient(FakeEmbeddingClient):
            def embed(self, texts, model=None, dimensions=None):
                vectors = super().embed(texts, model, dimensions)
                token.cancel()
                return vectors

        client = CancellingClient()
        sleeper = Sleeper()
        with pytest.raises(PipelineCancelled):
            make_batcher(client, sleep=sleeper).generate_embeddings(
                make_chunks("a", "b", "c"), cancel=token
            )

        assert len(client.calls) == 1
        assert sleeper.delays == []
