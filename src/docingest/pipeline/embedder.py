from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from docingest.pipeline.embedding_client import EmbeddingClient
from docingest.pipeline.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingServiceError,
    IngestionError,
    TokenBudgetExceeded,
)
from docingest.pipeline.retry import RetryPolicy
from docingest.pipeline.types import Chunk, EmbeddingVector

DEFAULT_MAX_BATCH_SIZE = 16


@dataclass(frozen=True)
class EmbeddingResult:
    vectors: list[EmbeddingVector]
    tokens_used: int


def plan_batches(
    chunks: Sequence[Chunk],
    *,
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    max_batch_tokens: int,
) -> list[list[Chunk]]:
    """Group chunks, in order, into batches honouring both limits.

    A batch is closed as soon as adding the next chunk would push it over
    ``max_batch_size`` chunks or ``max_batch_tokens`` tokens.
    """
    if max_batch_size <= 0:
        raise ValueError("max_batch_size must be > 0")
    if max_batch_tokens <= 0:
        raise ValueError("max_batch_tokens must be > 0")

    batches: list[list[Chunk]] = []
    current: list[Chunk] = []
    current_tokens = 0

    for chunk in chunks:
        if chunk.token_count > max_batch_tokens:
            raise TokenBudgetExceeded(
                f"chunk {chunk.chunk_id} has {chunk.token_count} tokens, "
                f"batch limit is {max_batch_tokens}",
                chunk_id=chunk.chunk_id,
            )
        if current and (
            len(current) + 1 > max_batch_size
            or current_tokens + chunk.token_count > max_batch_tokens
        ):
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(chunk)
        current_tokens += chunk.token_count

    if current:
        batches.append(current)
    return batches


class Embedder:
    def __init__(
        self,
        *,
        client: EmbeddingClient,
        retry_policy: RetryPolicy,
        dimensions: int,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        max_batch_tokens: int = 8100,
        max_input_tokens: int = 8191,
    ) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self._client = client
        self._retry_policy = retry_policy
        self._dimensions = dimensions
        self._max_batch_size = max_batch_size
        self._max_batch_tokens = max_batch_tokens
        self._max_input_tokens = max_input_tokens

    def embed(
        self,
        chunks: Sequence[Chunk],
        *,
        on_retry: Callable[[int, IngestionError, float], None] | None = None,
        on_batch: Callable[[int, int, int], None] | None = None,
    ) -> EmbeddingResult:
        """Embed ``chunks`` batch by batch, returning vectors in chunk order."""
        for chunk in chunks:
            if chunk.token_count > self._max_input_tokens:
                raise TokenBudgetExceeded(
                    f"chunk {chunk.chunk_id} has {chunk.token_count} tokens, "
                    f"model limit is {self._max_input_tokens}",
                    chunk_id=chunk.chunk_id,
                )

        batches = plan_batches(
            chunks,
            max_batch_size=self._max_batch_size,
            max_batch_tokens=self._max_batch_tokens,
        )

        vectors: list[EmbeddingVector] = []
        tokens_used = 0
        for batch_number, batch in enumerate(batches, start=1):
            texts = [chunk.text for chunk in batch]
            response = self._retry_policy.call(
                lambda: self._client.embed_texts(texts),
                on_retry=on_retry,
            )
            if len(response.vectors) != len(batch):
                raise EmbeddingServiceError(
                    f"expected {len(batch)} vectors, got {len(response.vectors)}",
                    retryable=False,
                )

            for chunk, values in zip(batch, response.vectors):
                if len(values) != self._dimensions:
                    raise EmbeddingDimensionMismatch(
                        f"chunk {chunk.chunk_id}: expected dimension {self._dimensions}, "
                        f"got {len(values)}"
                    )
                vectors.append(EmbeddingVector(chunk_id=chunk.chunk_id, values=tuple(values)))

            batch_tokens = (
                response.prompt_tokens
                if response.prompt_tokens is not None
                else sum(chunk.token_count for chunk in batch)
            )
            tokens_used += batch_tokens
            if on_batch is not None:
                on_batch(batch_number, len(batch), batch_tokens)

        return EmbeddingResult(vectors=vectors, tokens_used=tokens_used)
