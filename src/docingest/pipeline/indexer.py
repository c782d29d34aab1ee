from __future__ import annotations

from pathlib import PurePosixPath
from typing import Sequence

from docingest.pipeline.blob_store import BlobStore
from docingest.pipeline.index_store import IndexStore
from docingest.pipeline.types import Chunk, EmbeddingVector, IndexRecord, SourceDocument


def blob_key_for(source_path: str) -> str:
    path = PurePosixPath(source_path)
    if path.is_absolute():
        return "/".join(path.parts[1:])
    return source_path


def build_records(
    document: SourceDocument,
    chunks: Sequence[Chunk],
    vectors: Sequence[EmbeddingVector],
) -> list[IndexRecord]:
    if len(chunks) != len(vectors):
        raise ValueError("chunks and vectors must have the same length")

    blob_key = blob_key_for(document.source_path)
    records: list[IndexRecord] = []
    for expected_index, (chunk, vector) in enumerate(zip(chunks, vectors)):
        if chunk.sequence_index != expected_index:
            raise ValueError(
                f"chunk sequence out of order: expected {expected_index}, got {chunk.sequence_index}"
            )
        if vector.chunk_id != chunk.chunk_id:
            raise ValueError(f"vector {vector.chunk_id} does not match chunk {chunk.chunk_id}")
        records.append(
            IndexRecord(
                chunk_id=chunk.chunk_id,
                doc_id=document.doc_id,
                sequence_index=chunk.sequence_index,
                text=chunk.text,
                embedding=vector.values,
                source_path=document.source_path,
                blob_key=blob_key,
                section=chunk.section,
                pages=chunk.pages,
                start_offset=chunk.start_offset,
                end_offset=chunk.end_offset,
            )
        )
    return records


class Indexer:
    def __init__(
        self,
        *,
        index_store: IndexStore,
        blob_store: BlobStore,
        index_name: str,
        fingerprint: str = "",
    ) -> None:
        self._index_store = index_store
        self._blob_store = blob_store
        self._index_name = index_name
        self._fingerprint = fingerprint

    def is_current(self, document: SourceDocument) -> bool:
        """True when the index holds this content, built with the same settings, and its blob."""
        stored = self._index_store.get_document(self._index_name, document.doc_id)
        if stored is None or stored.content_hash != document.content_hash:
            return False
        if stored.fingerprint != self._fingerprint:
            return False
        return self._blob_store.exists(stored.blob_key)

    def write(
        self,
        document: SourceDocument,
        chunks: Sequence[Chunk],
        vectors: Sequence[EmbeddingVector],
    ) -> int:
        """Upload the document bytes and upsert its records; returns the record count.

        Both writes are idempotent overwrites, so a document that fails
        half-way is simply written again on the next run.
        """
        records = build_records(document, chunks, vectors)
        blob_key = blob_key_for(document.source_path)
        self._blob_store.put(blob_key, document.content)
        self._index_store.upsert_document(
            self._index_name,
            document,
            blob_key=blob_key,
            fingerprint=self._fingerprint,
            records=records,
        )
        return len(records)

    def remove(self, doc_id: str, source_path: str) -> int:
        stored = self._index_store.get_document(self._index_name, doc_id)
        removed = self._index_store.remove_document(self._index_name, doc_id)
        blob_key = stored.blob_key if stored is not None else blob_key_for(source_path)
        self._blob_store.delete(blob_key)
        return removed
