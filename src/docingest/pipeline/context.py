from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import json
from pathlib import Path
from threading import Event
from typing import Callable

import httpx

from docingest.config import Settings
from docingest.db import create_index_engine
from docingest.pipeline.blob_store import FileBlobStore
from docingest.pipeline.chunker import validate_chunking
from docingest.pipeline.embedder import Embedder
from docingest.pipeline.embedding_client import HttpEmbeddingClient
from docingest.pipeline.extraction_client import HttpExtractionClient
from docingest.pipeline.extractor import Extractor
from docingest.pipeline.index_store import SqlIndexStore
from docingest.pipeline.indexer import Indexer
from docingest.pipeline.retry import RetryPolicy
from docingest.pipeline.run_log import RunLog
from docingest.pipeline.tokenizer import Tokenizer, get_tokenizer


@dataclass
class PipelineContext:
    """Everything one ingestion run shares across its worker threads."""

    extractor: Extractor
    tokenizer: Tokenizer
    embedder: Embedder
    indexer: Indexer
    log: RunLog = field(default_factory=RunLog)
    chunk_size: int = 1024
    chunk_overlap: int = 128
    concurrency: int = 4
    skip_unchanged: bool = True
    source_root: Path = field(default_factory=lambda: Path("."))
    cancel_event: Event = field(default_factory=Event)
    closers: list[Callable[[], None]] = field(default_factory=list)

    def __post_init__(self) -> None:
        validate_chunking(self.chunk_size, self.chunk_overlap)
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")

    def close(self) -> None:
        while self.closers:
            self.closers.pop()()


def ingestion_fingerprint(settings: Settings) -> str:
    """Digest of the settings that shape stored chunks and vectors."""
    payload = json.dumps(
        {
            "chunk_size": settings.chunk_size,
            "chunk_overlap": settings.chunk_overlap,
            "tokenizer": settings.tokenizer,
            "embed_model": settings.embed_model,
            "embed_dimensions": settings.embed_dimensions,
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_seconds,
        max_delay=settings.retry_max_seconds,
        jitter=settings.retry_jitter,
    )


def build_context(settings: Settings, *, log: RunLog | None = None) -> PipelineContext:
    validate_chunking(settings.chunk_size, settings.chunk_overlap)
    if settings.concurrency < 1:
        raise ValueError("concurrency must be >= 1")
    retry_policy = retry_policy_from_settings(settings)
    http_client = httpx.Client(
        timeout=settings.http_timeout_seconds,
        limits=httpx.Limits(max_connections=max(10, settings.concurrency * 2)),
    )
    engine = create_index_engine(settings.database_url)

    index_store = SqlIndexStore(engine)
    index_store.ensure_schema()

    extractor = Extractor(
        client=HttpExtractionClient(
            base_url=settings.extract_base_url,
            api_key=settings.extract_api_key,
            timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        ),
        retry_policy=retry_policy,
        local_pdf_parser=settings.local_pdf_parser,
    )
    embedder = Embedder(
        client=HttpEmbeddingClient(
            base_url=settings.embed_base_url,
            model=settings.embed_model,
            api_key=settings.embed_api_key,
            dimensions=settings.embed_dimensions if settings.embed_send_dimensions else None,
            timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        ),
        retry_policy=retry_policy,
        dimensions=settings.embed_dimensions,
        max_batch_size=settings.embed_batch_size,
        max_batch_tokens=settings.embed_batch_max_tokens,
        max_input_tokens=settings.embed_max_input_tokens,
    )
    indexer = Indexer(
        index_store=index_store,
        blob_store=FileBlobStore(Path(settings.blob_root), settings.blob_container),
        index_name=settings.index_name,
        fingerprint=ingestion_fingerprint(settings),
    )

    return PipelineContext(
        extractor=extractor,
        tokenizer=get_tokenizer(settings.tokenizer),
        embedder=embedder,
        indexer=indexer,
        log=log or RunLog(),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        concurrency=settings.concurrency,
        skip_unchanged=settings.skip_unchanged,
        source_root=Path(settings.source_root),
        closers=[engine.dispose, http_client.close],
    )
