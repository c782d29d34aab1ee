from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import hashlib
from pathlib import Path
from threading import Lock


@dataclass(frozen=True)
class SourceFile:
    """A discovered input file; its bytes are read only when it is processed."""

    doc_id: str
    source_path: str
    path: Path
    media_type: str


@dataclass(frozen=True)
class SourceDocument:
    doc_id: str
    source_path: str
    content: bytes
    media_type: str

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


@dataclass(frozen=True)
class TextBlock:
    doc_id: str
    text: str
    page_number: int | None = None
    section: str | None = None


@dataclass(frozen=True)
class Chunk:
    doc_id: str
    sequence_index: int
    text: str
    start_offset: int
    end_offset: int
    section: str | None = None
    pages: tuple[int, ...] = ()

    @property
    def chunk_id(self) -> str:
        return f"{self.doc_id}-{self.sequence_index:04d}"

    @property
    def token_count(self) -> int:
        return self.end_offset - self.start_offset


@dataclass(frozen=True)
class EmbeddingVector:
    chunk_id: str
    values: tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class IndexRecord:
    chunk_id: str
    doc_id: str
    sequence_index: int
    text: str
    embedding: tuple[float, ...]
    source_path: str
    blob_key: str
    section: str | None
    pages: tuple[int, ...]
    start_offset: int
    end_offset: int


class DocumentState(str, Enum):
    DISCOVERED = "discovered"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({DocumentState.DONE, DocumentState.FAILED, DocumentState.SKIPPED})


@dataclass(frozen=True)
class DocumentOutcome:
    doc_id: str
    source_path: str
    state: DocumentState
    error_kind: str | None = None
    reason: str | None = None
    chunk_count: int = 0
    embedding_tokens: int = 0


@dataclass
class IngestionRun:
    """Per-invocation aggregate of document outcomes.

    Worker threads call ``record`` concurrently; every other accessor reads a
    consistent snapshot under the same lock.
    """

    outcomes: dict[str, DocumentOutcome] = field(default_factory=dict)
    cancelled: bool = False
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record(self, outcome: DocumentOutcome) -> None:
        if outcome.state not in TERMINAL_STATES:
            raise ValueError(f"outcome state must be terminal, got {outcome.state.value}")
        with self._lock:
            self.outcomes[outcome.doc_id] = outcome

    def _snapshot(self) -> list[DocumentOutcome]:
        with self._lock:
            return sorted(self.outcomes.values(), key=lambda item: item.source_path)

    def count(self, state: DocumentState) -> int:
        return sum(1 for outcome in self._snapshot() if outcome.state is state)

    @property
    def documents_processed(self) -> int:
        return len(self._snapshot())

    @property
    def chunks_uploaded(self) -> int:
        return sum(
            outcome.chunk_count
            for outcome in self._snapshot()
            if outcome.state is DocumentState.DONE
        )

    @property
    def embedding_tokens(self) -> int:
        return sum(outcome.embedding_tokens for outcome in self._snapshot())

    @property
    def failed(self) -> list[DocumentOutcome]:
        return [outcome for outcome in self._snapshot() if outcome.state is DocumentState.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_failures else 0

    def summary_lines(self) -> list[str]:
        lines = [
            "Ingestion run summary",
            f"  documents: {self.documents_processed}"
            f" (done={self.count(DocumentState.DONE)}"
            f" skipped={self.count(DocumentState.SKIPPED)}"
            f" failed={self.count(DocumentState.FAILED)})",
            f"  chunks uploaded: {self.chunks_uploaded}",
            f"  embedding tokens: {self.embedding_tokens}",
        ]
        if self.cancelled:
            lines.append("  run was cancelled before all documents were dispatched")
        failed = self.failed
        if failed:
            lines.append("Failed documents:")
            for outcome in failed:
                lines.append(f"  {outcome.source_path}: {outcome.error_kind}: {outcome.reason}")
        return lines
