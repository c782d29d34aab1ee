from collections.abc import Callable, Iterator
from io import StringIO
from pathlib import Path

import pytest

from docingest.config import get_settings
from docingest.db import create_index_engine
from docingest.pipeline.blob_store import FileBlobStore
from docingest.pipeline.context import PipelineContext
from docingest.pipeline.embedder import Embedder
from docingest.pipeline.extractor import Extractor
from docingest.pipeline.index_store import SqlIndexStore
from docingest.pipeline.indexer import Indexer
from docingest.pipeline.retry import RetryPolicy
from docingest.pipeline.run_log import VERBOSE, RunLog
from docingest.pipeline.tokenizer import WhitespaceTokenizer
from tests.fakes import INDEX_NAME, FakeEmbeddingClient, FakeExtractionClient


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def no_sleep_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05, sleep_fn=lambda _: None)


@pytest.fixture
def index_store(tmp_path: Path) -> Iterator[SqlIndexStore]:
    engine = create_index_engine(f"sqlite+pysqlite:///{tmp_path / 'index' / 'ingest.db'}")
    store = SqlIndexStore(engine)
    store.ensure_schema()
    yield store
    engine.dispose()


@pytest.fixture
def blob_store(tmp_path: Path) -> FileBlobStore:
    return FileBlobStore(tmp_path / "blobs", "content")


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def make_context(
    tmp_path: Path,
    index_store: SqlIndexStore,
    blob_store: FileBlobStore,
    no_sleep_policy: RetryPolicy,
    log_stream: StringIO,
) -> Callable[..., PipelineContext]:
    def _make(
        *,
        embedding_client: object | None = None,
        extraction_client: object | None = None,
        dimensions: int = 8,
        chunk_size: int = 20,
        chunk_overlap: int = 5,
        concurrency: int = 2,
        skip_unchanged: bool = False,
        max_batch_size: int = 4,
        max_batch_tokens: int = 200,
        source_root: Path | None = None,
        fingerprint: str = "",
    ) -> PipelineContext:
        return PipelineContext(
            extractor=Extractor(
                client=extraction_client or FakeExtractionClient(),
                retry_policy=no_sleep_policy,
            ),
            tokenizer=WhitespaceTokenizer(),
            embedder=Embedder(
                client=embedding_client or FakeEmbeddingClient(dimensions),
                retry_policy=no_sleep_policy,
                dimensions=dimensions,
                max_batch_size=max_batch_size,
                max_batch_tokens=max_batch_tokens,
                max_input_tokens=max_batch_tokens,
            ),
            indexer=Indexer(
                index_store=index_store,
                blob_store=blob_store,
                index_name=INDEX_NAME,
                fingerprint=fingerprint,
            ),
            log=RunLog(verbosity=VERBOSE, stream=log_stream),
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            concurrency=concurrency,
            skip_unchanged=skip_unchanged,
            source_root=source_root or tmp_path / "docs",
        )

    return _make
