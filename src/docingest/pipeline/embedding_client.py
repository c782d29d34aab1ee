from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from docingest.pipeline.errors import EmbeddingServiceError, TokenBudgetExceeded
from docingest.pipeline.extraction_client import RETRYABLE_STATUS_CODES, parse_retry_after

_CONTEXT_LENGTH_MARKERS = ("maximum context length", "context_length_exceeded", "too many tokens")


@dataclass(frozen=True)
class EmbeddingResponse:
    vectors: list[list[float]]
    prompt_tokens: int | None = None


class EmbeddingClient(Protocol):
    def embed_texts(self, texts: list[str]) -> EmbeddingResponse: ...


class HttpEmbeddingClient:
    """OpenAI-compatible ``/embeddings`` client."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str | None = None,
        dimensions: int | None = None,
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._dimensions = dimensions
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._http_client.close()

    def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        if not texts:
            return EmbeddingResponse(vectors=[], prompt_tokens=0)

        body: dict[str, object] = {"model": self._model, "input": texts}
        if self._dimensions is not None:
            body["dimensions"] = self._dimensions
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        try:
            response = self._http_client.post(
                f"{self._base_url}/embeddings",
                json=body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise EmbeddingServiceError(f"embedding request failed: {exc}") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise EmbeddingServiceError(
                f"embedding service returned {response.status_code}",
                retry_after=parse_retry_after(response),
            )
        if response.status_code == 400 and any(
            marker in response.text.lower() for marker in _CONTEXT_LENGTH_MARKERS
        ):
            raise TokenBudgetExceeded(f"embedding input too long: {response.text[:200]}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingServiceError(str(exc), retryable=False) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingServiceError("Invalid embeddings payload: not JSON") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise EmbeddingServiceError("Invalid embeddings payload: missing data")

        if all(isinstance(item, dict) and isinstance(item.get("index"), int) for item in data):
            data = sorted(data, key=lambda item: item["index"])

        vectors: list[list[float]] = []
        for item in data:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list) or not embedding:
                raise EmbeddingServiceError("Invalid embeddings payload: missing embedding vector")
            vectors.append([float(value) for value in embedding])

        if len(vectors) != len(texts):
            raise EmbeddingServiceError(
                f"Invalid embeddings payload: expected {len(texts)} vectors, got {len(vectors)}"
            )

        usage = payload.get("usage")
        prompt_tokens = usage.get("prompt_tokens") if isinstance(usage, dict) else None
        return EmbeddingResponse(
            vectors=vectors,
            prompt_tokens=prompt_tokens if isinstance(prompt_tokens, int) else None,
        )
