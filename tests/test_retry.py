"""Tests for cuepoint.retry module."""

from __future__ import annotations

import pytest

from cuepoint.retry import RetryPolicy, is_retryable_error


class StatusError(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class TestIsRetryableError:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_status(self, status: int) -> None:
        assert is_retryable_error(StatusError(status))

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_not_retryable(self, status: int) -> None:
        assert not is_retryable_error(StatusError(status))

    def test_network_errors(self) -> None:
        assert is_retryable_error(TimeoutError())
        assert is_retryable_error(ConnectionResetError())

    def test_message_fragments(self) -> None:
        assert is_retryable_error(RuntimeError("Rate limit reached for requests"))
        assert is_retryable_error(RuntimeError("502 Bad Gateway"))
        assert not is_retryable_error(ValueError("invalid api key"))


class TestRetryPolicy:
    def test_delay_grows_and_caps(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert [policy.delay_for(a) for a in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_bounded(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0.5)
        for _ in range(20):
            assert 2.0 <= policy.delay_for(1) <= 2.5

    def test_succeeds_after_transient_failures(self) -> None:
        attempts = []
        delays = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("connection refused")
            return "ok"

        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)
        assert policy.run(flaky, sleep=delays.append) == "ok"
        assert delays == [1.0, 2.0]

    def test_last_error_propagates(self) -> None:
        def always_fails():
            raise TimeoutError("timed out")

        with pytest.raises(TimeoutError):
            RetryPolicy(max_attempts=2, base_delay=0.0, jitter=0.0).run(
                always_fails, sleep=lambda s: None
            )

    def test_non_retryable_raised_immediately(self) -> None:
        attempts = []

        def bad_request():
            attempts.append(1)
            raise ValueError("malformed request")

        with pytest.raises(ValueError):
            RetryPolicy().run(bad_request, sleep=lambda s: None)
        assert len(attempts) == 1

    def test_custom_predicate(self) -> None:
        attempts = []

        def fails():
            attempts.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0).run(
                fails, retryable=lambda e: isinstance(e, KeyError), sleep=lambda s: None
            )
        assert len(attempts) == 3

    def test_max_attempts_must_be_positive(self) -> None:
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)
