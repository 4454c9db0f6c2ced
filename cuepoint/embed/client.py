"""
cuepoint.embed.client - Embedding backend wrapper using litellm.

One call embeds a list of strings and returns one vector per input, in
input order, each with the configured model's dimensionality.
"""

from __future__ import annotations

from typing import Any

from cuepoint.config import EmbeddingOptions
from cuepoint.exceptions import EmbeddingError, EmbeddingResponseError


class EmbeddingClient:
    """Thin litellm embedding client with response validation."""

    def __init__(self, options: EmbeddingOptions | None = None) -> None:
        self.options = options or EmbeddingOptions()

    def embed(
        self,
        texts: list[str],
        model: str | None = None,
        dimensions: int | None = None,
    ) -> list[list[float]]:
        """Embed ``texts`` with a single backend call.

        Raises:
            EmbeddingError: If litellm is not installed
            EmbeddingResponseError: If the response has the wrong shape
            Exception: Backend errors propagate so the caller's retry policy
                can classify them
        """
        if not texts:
            return []

        try:
            import litellm
        except ImportError as e:
            raise EmbeddingError("litellm not installed. Install with: pip install litellm") from e

        litellm.telemetry = False

        response = litellm.embedding(
            model=model or self.options.model,
            input=texts,
            timeout=self.options.timeout_seconds,
        )
        return self._parse_response(response, len(texts), dimensions or self.options.dimensions)

    def _parse_response(self, response: Any, expected: int, dimensions: int) -> list[list[float]]:
        data = getattr(response, "data", None)
        if data is None and isinstance(response, dict):
            data = response.get("data")
        if not data:
            raise EmbeddingResponseError("Empty response from embedding backend")
        if len(data) != expected:
            raise EmbeddingResponseError(
                f"Embedding backend returned {len(data)} vectors for {expected} inputs"
            )

        items = []
        for position, item in enumerate(data):
            if isinstance(item, dict):
                index = item.get("index", position)
                vector = item.get("embedding")
            else:
                index = getattr(item, "index", position)
                vector = getattr(item, "embedding", None)
            if vector is None:
                raise EmbeddingResponseError(f"No embedding in response item {position}")
            if len(vector) != dimensions:
                raise EmbeddingResponseError(
                    f"Expected {dimensions}-dimensional vectors, "
                    f"got {len(vector)}"
                )
            items.append((index, list(vector)))

        items.sort(key=lambda pair: pair[0])
        return [vector for _, vector in items]
