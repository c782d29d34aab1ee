from __future__ import annotations


class IngestionError(RuntimeError):
    """Base class for failures recorded against a single document."""

    retryable = False

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def kind(self) -> str:
        return type(self).__name__


class UnsupportedFormat(IngestionError):
    pass


class CorruptDocument(IngestionError):
    pass


class SourceReadError(IngestionError):
    pass


class ServiceError(IngestionError):
    """Failure reported by a remote backend; retryable unless told otherwise."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, retry_after=retry_after)
        self.retryable = retryable


class ExtractionServiceError(ServiceError):
    pass


class TokenBudgetExceeded(IngestionError):
    def __init__(self, message: str, *, chunk_id: str | None = None) -> None:
        super().__init__(message)
        self.chunk_id = chunk_id


class EmbeddingServiceError(ServiceError):
    pass


class EmbeddingDimensionMismatch(IngestionError):
    pass


class IndexWriteError(IngestionError):
    pass


class BlobWriteError(IngestionError):
    pass


class Cancelled(IngestionError):
    pass
