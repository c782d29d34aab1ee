from __future__ import annotations

from dataclasses import dataclass, field
from random import random
from time import sleep
from typing import Callable, TypeVar

from docingest.pipeline.errors import IngestionError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with proportional jitter.

    Only ``IngestionError`` instances flagged ``retryable`` are retried. A
    ``retry_after`` hint carried by the error replaces the computed delay when
    it is larger.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.2
    sleep_fn: Callable[[float], None] = field(default=sleep, repr=False, compare=False)
    random_fn: Callable[[], float] = field(default=random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def delay(self, attempt: int, *, retry_after: float | None = None) -> float:
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        backoff += self.random_fn() * self.jitter * backoff
        if retry_after is not None and retry_after > backoff:
            return retry_after
        return backoff

    def call(
        self,
        operation: Callable[[], T],
        *,
        on_retry: Callable[[int, IngestionError, float], None] | None = None,
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except IngestionError as exc:
                if not exc.retryable or attempt >= self.max_attempts:
                    raise
                wait = self.delay(attempt, retry_after=exc.retry_after)
                if on_retry is not None:
                    on_retry(attempt, exc, wait)
                self.sleep_fn(wait)
                attempt += 1
