"""
cuepoint.retry - Reusable retry policy with exponential backoff.

Shared by the embedding batcher, the API transcriber, and the pipeline's
toolchain-stage retries.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_MESSAGES = (
    "rate limit",
    "timeout",
    "timed out",
    "internal server error",
    "bad gateway",
    "connection",
)


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether an external-call error is worth retrying.

    Looks at HTTP-style status codes (``status_code`` as set by litellm and
    openai, or ``status``), builtin network errors, and well-known message
    fragments.
    """
    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
            return True

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


class RetryPolicy(BaseModel):
    """Retry budget and backoff shape for one kind of external call."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    jitter: float = Field(default=1.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (zero-based)."""
        exponential = self.base_delay * (2**attempt)
        extra = random.uniform(0, self.jitter) if self.jitter else 0.0
        return min(exponential + extra, self.max_delay)

    def run(
        self,
        fn: Callable[[], T],
        *,
        retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], None] = time.sleep,
        description: str = "call",
    ) -> T:
        """Call ``fn`` until it succeeds or the attempt budget is spent.

        Non-retryable errors propagate on first occurrence. After the last
        attempt the final error propagates unchanged so callers can wrap it
        in their own exception type.
        """
        for attempt in range(self.max_attempts):
            try:
                result = fn()
            except Exception as e:
                if attempt == self.max_attempts - 1:
                    logger.warning(
                        "%s failed after %d attempt(s): %s", description, self.max_attempts, e
                    )
                    raise
                if not retryable(e):
                    logger.warning("%s failed with non-retryable error: %s", description, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    description,
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    e,
                )
                sleep(delay)
                continue

            if attempt > 0:
                logger.info("%s succeeded on attempt %d", description, attempt + 1)
            return result

        raise RuntimeError("unreachable: retry loop exited without result")
