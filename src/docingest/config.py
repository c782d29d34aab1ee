from dataclasses import dataclass
from functools import lru_cache
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class Settings:
    database_url: str
    index_name: str
    blob_root: str
    blob_container: str
    source_root: str
    chunk_size: int
    chunk_overlap: int
    tokenizer: str
    concurrency: int
    skip_unchanged: bool
    local_pdf_parser: bool
    embed_base_url: str
    embed_model: str
    embed_api_key: str | None
    embed_dimensions: int
    embed_send_dimensions: bool
    embed_batch_size: int
    embed_batch_max_tokens: int
    embed_max_input_tokens: int
    extract_base_url: str
    extract_api_key: str | None
    http_timeout_seconds: float
    retry_max_attempts: int
    retry_base_seconds: float
    retry_max_seconds: float
    retry_jitter: float


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv(
            "INGEST_DATABASE_URL",
            "sqlite+pysqlite:///data/index/ingest.db",
        ),
        index_name=os.getenv("INGEST_INDEX_NAME", "documents"),
        blob_root=os.getenv("INGEST_BLOB_ROOT", "data/blobs"),
        blob_container=os.getenv("INGEST_BLOB_CONTAINER", "content"),
        source_root=os.getenv("INGEST_SOURCE_ROOT", "."),
        chunk_size=_to_int(os.getenv("INGEST_CHUNK_SIZE"), default=1024, minimum=1),
        chunk_overlap=_to_int(os.getenv("INGEST_CHUNK_OVERLAP"), default=128, minimum=0),
        tokenizer=os.getenv("INGEST_TOKENIZER", "cl100k_base"),
        concurrency=_to_int(os.getenv("INGEST_CONCURRENCY"), default=4, minimum=1),
        skip_unchanged=_to_bool(os.getenv("INGEST_SKIP_UNCHANGED"), default=True),
        local_pdf_parser=_to_bool(os.getenv("INGEST_LOCAL_PDF_PARSER"), default=False),
        embed_base_url=os.getenv("EMBED_BASE_URL", "http://localhost:11434/v1"),
        embed_model=os.getenv("EMBED_MODEL", "text-embedding-3-small"),
        embed_api_key=os.getenv("EMBED_API_KEY") or None,
        embed_dimensions=_to_int(os.getenv("EMBED_DIMENSIONS"), default=1536, minimum=1),
        embed_send_dimensions=_to_bool(os.getenv("EMBED_SEND_DIMENSIONS"), default=False),
        embed_batch_size=_to_int(os.getenv("EMBED_BATCH_SIZE"), default=16, minimum=1),
        embed_batch_max_tokens=_to_int(
            os.getenv("EMBED_BATCH_MAX_TOKENS"), default=8100, minimum=1
        ),
        embed_max_input_tokens=_to_int(
            os.getenv("EMBED_MAX_INPUT_TOKENS"), default=8191, minimum=1
        ),
        extract_base_url=os.getenv("EXTRACT_BASE_URL", "http://localhost:5050"),
        extract_api_key=os.getenv("EXTRACT_API_KEY") or None,
        http_timeout_seconds=_to_float(
            os.getenv("HTTP_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        retry_max_attempts=_to_int(os.getenv("RETRY_MAX_ATTEMPTS"), default=5, minimum=1),
        retry_base_seconds=_to_float(os.getenv("RETRY_BASE_SECONDS"), default=1.0, minimum=0.0),
        retry_max_seconds=_to_float(os.getenv("RETRY_MAX_SECONDS"), default=60.0, minimum=0.0),
        retry_jitter=_to_float(os.getenv("RETRY_JITTER"), default=0.2, minimum=0.0),
    )
