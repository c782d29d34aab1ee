from __future__ import annotations

from array import array
from dataclasses import dataclass
import json
from threading import Lock
from typing import Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docingest.db import Base
from docingest.models import DocumentRow
from docingest.pipeline.errors import IndexWriteError
from docingest.pipeline.types import IndexRecord, SourceDocument

_UPSERT_CHUNK = text(
    """
    INSERT INTO chunks (
        index_name, id, doc_id, sequence_index, text, section, pages,
        start_offset, end_offset, token_count, embedding, embedding_dim,
        source_path, blob_key
    )
    VALUES (
        :index_name, :id, :doc_id, :sequence_index, :text, :section, :pages,
        :start_offset, :end_offset, :token_count, :embedding, :embedding_dim,
        :source_path, :blob_key
    )
    ON CONFLICT (index_name, id) DO UPDATE
    SET doc_id = EXCLUDED.doc_id,
        sequence_index = EXCLUDED.sequence_index,
        text = EXCLUDED.text,
        section = EXCLUDED.section,
        pages = EXCLUDED.pages,
        start_offset = EXCLUDED.start_offset,
        end_offset = EXCLUDED.end_offset,
        token_count = EXCLUDED.token_count,
        embedding = EXCLUDED.embedding,
        embedding_dim = EXCLUDED.embedding_dim,
        source_path = EXCLUDED.source_path,
        blob_key = EXCLUDED.blob_key
    """
)

_DELETE_STALE_CHUNKS = text(
    """
    DELETE FROM chunks
    WHERE index_name = :index_name AND doc_id = :doc_id AND sequence_index >= :chunk_count
    """
)

_UPSERT_DOCUMENT = text(
    """
    INSERT INTO documents (
        index_name, id, source_path, blob_key, media_type, content_hash, fingerprint, chunk_count
    )
    VALUES (
        :index_name, :id, :source_path, :blob_key, :media_type, :content_hash, :fingerprint,
        :chunk_count
    )
    ON CONFLICT (index_name, id) DO UPDATE
    SET source_path = EXCLUDED.source_path,
        blob_key = EXCLUDED.blob_key,
        media_type = EXCLUDED.media_type,
        content_hash = EXCLUDED.content_hash,
        fingerprint = EXCLUDED.fingerprint,
        chunk_count = EXCLUDED.chunk_count
    """
)


@dataclass(frozen=True)
class StoredDocument:
    doc_id: str
    source_path: str
    blob_key: str
    content_hash: str
    fingerprint: str
    chunk_count: int


class IndexStore(Protocol):
    def upsert_document(
        self,
        index_name: str,
        document: SourceDocument,
        *,
        blob_key: str,
        fingerprint: str,
        records: Sequence[IndexRecord],
    ) -> None: ...

    def get_document(self, index_name: str, doc_id: str) -> StoredDocument | None: ...

    def remove_document(self, index_name: str, doc_id: str) -> int: ...


def encode_embedding(values: Sequence[float]) -> bytes:
    return array("f", values).tobytes()


def _record_params(index_name: str, record: IndexRecord) -> dict[str, object]:
    return {
        "index_name": index_name,
        "id": record.chunk_id,
        "doc_id": record.doc_id,
        "sequence_index": record.sequence_index,
        "text": record.text,
        "section": record.section,
        "pages": json.dumps(list(record.pages)),
        "start_offset": record.start_offset,
        "end_offset": record.end_offset,
        "token_count": record.end_offset - record.start_offset,
        "embedding": encode_embedding(record.embedding),
        "embedding_dim": len(record.embedding),
        "source_path": record.source_path,
        "blob_key": record.blob_key,
    }


class SqlIndexStore:
    """Chunk index kept in a relational database through SQLAlchemy.

    Every write for one document runs in a single transaction, so a document
    is either fully replaced or left as it was. Writes are serialized per
    store; SQLite allows only one writer at a time anyway.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._write_lock = Lock()

    def ensure_schema(self) -> None:
        Base.metadata.create_all(bind=self._engine)

    def upsert_document(
        self,
        index_name: str,
        document: SourceDocument,
        *,
        blob_key: str,
        fingerprint: str,
        records: Sequence[IndexRecord],
    ) -> None:
        for record in records:
            if record.doc_id != document.doc_id:
                raise ValueError(f"record {record.chunk_id} does not belong to {document.doc_id}")

        try:
            with self._write_lock, self._engine.begin() as connection:
                if records:
                    connection.execute(
                        _UPSERT_CHUNK,
                        [_record_params(index_name, record) for record in records],
                    )
                connection.execute(
                    _DELETE_STALE_CHUNKS,
                    {
                        "index_name": index_name,
                        "doc_id": document.doc_id,
                        "chunk_count": len(records),
                    },
                )
                connection.execute(
                    _UPSERT_DOCUMENT,
                    {
                        "index_name": index_name,
                        "id": document.doc_id,
                        "source_path": document.source_path,
                        "blob_key": blob_key,
                        "media_type": document.media_type,
                        "content_hash": document.content_hash,
                        "fingerprint": fingerprint,
                        "chunk_count": len(records),
                    },
                )
        except SQLAlchemyError as exc:
            raise IndexWriteError(f"index upsert failed for {document.source_path}: {exc}") from exc

    def get_document(self, index_name: str, doc_id: str) -> StoredDocument | None:
        with Session(self._engine) as session:
            row = session.get(DocumentRow, (index_name, doc_id))
            if row is None:
                return None
            return StoredDocument(
                doc_id=row.id,
                source_path=row.source_path,
                blob_key=row.blob_key,
                content_hash=row.content_hash,
                fingerprint=row.fingerprint,
                chunk_count=row.chunk_count,
            )

    def remove_document(self, index_name: str, doc_id: str) -> int:
        try:
            with self._write_lock, self._engine.begin() as connection:
                removed = connection.execute(
                    text("DELETE FROM chunks WHERE index_name = :index_name AND doc_id = :doc_id"),
                    {"index_name": index_name, "doc_id": doc_id},
                ).rowcount
                connection.execute(
                    text("DELETE FROM documents WHERE index_name = :index_name AND id = :doc_id"),
                    {"index_name": index_name, "doc_id": doc_id},
                )
        except SQLAlchemyError as exc:
            raise IndexWriteError(f"index delete failed for {doc_id}: {exc}") from exc
        return int(removed or 0)
