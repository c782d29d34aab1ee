from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from time import perf_counter
from typing import Iterable

from docingest.pipeline.chunker import chunk_blocks
from docingest.pipeline.context import PipelineContext
from docingest.pipeline.errors import Cancelled, IngestionError
from docingest.pipeline.loader import discover_documents, read_source
from docingest.pipeline.types import DocumentOutcome, DocumentState, IngestionRun, SourceFile


class IngestionPipeline:
    """Drives each document through extract, chunk, embed and index.

    Documents run concurrently on a bounded thread pool; the stages of one
    document always run in order on a single worker. A failure is recorded
    against its document and never stops the run.
    """

    def __init__(self, context: PipelineContext) -> None:
        self._context = context

    def _check_cancelled(self, next_state: DocumentState) -> None:
        if self._context.cancel_event.is_set():
            raise Cancelled(f"run cancelled before {next_state.value}")

    def process(self, source: SourceFile) -> DocumentOutcome:
        context = self._context
        log = context.log
        state = DocumentState.DISCOVERED
        embedding_tokens = 0
        start = perf_counter()

        def on_retry(attempt: int, exc: IngestionError, delay: float) -> None:
            log.info(
                "retrying",
                doc_id=source.doc_id,
                state=state.value,
                attempt=attempt,
                error=exc.kind,
                delay_s=f"{delay:.2f}",
            )

        def on_batch(batch_number: int, size: int, tokens: int) -> None:
            log.debug(
                "embedding batch sent",
                doc_id=source.doc_id,
                batch=batch_number,
                chunks=size,
                tokens=tokens,
            )

        try:
            document = read_source(source)
            if context.skip_unchanged and context.indexer.is_current(document):
                log.info("document unchanged", doc_id=source.doc_id, path=source.source_path)
                return DocumentOutcome(
                    doc_id=source.doc_id,
                    source_path=source.source_path,
                    state=DocumentState.SKIPPED,
                    reason="unchanged",
                )

            self._check_cancelled(DocumentState.EXTRACTING)
            state = DocumentState.EXTRACTING
            log.debug("extracting", doc_id=source.doc_id, media_type=source.media_type)
            blocks = list(context.extractor.extract(document, on_retry=on_retry))

            self._check_cancelled(DocumentState.CHUNKING)
            state = DocumentState.CHUNKING
            chunks = chunk_blocks(
                blocks,
                tokenizer=context.tokenizer,
                chunk_size=context.chunk_size,
                chunk_overlap=context.chunk_overlap,
            )
            log.debug("chunked", doc_id=source.doc_id, blocks=len(blocks), chunks=len(chunks))

            self._check_cancelled(DocumentState.EMBEDDING)
            state = DocumentState.EMBEDDING
            embedded = context.embedder.embed(chunks, on_retry=on_retry, on_batch=on_batch)
            embedding_tokens = embedded.tokens_used

            self._check_cancelled(DocumentState.INDEXING)
            state = DocumentState.INDEXING
            chunk_count = context.indexer.write(document, chunks, embedded.vectors)
        except IngestionError as exc:
            log.error(
                "document failed",
                doc_id=source.doc_id,
                path=source.source_path,
                state=state.value,
                error=exc.kind,
                reason=str(exc),
            )
            return DocumentOutcome(
                doc_id=source.doc_id,
                source_path=source.source_path,
                state=DocumentState.FAILED,
                error_kind=exc.kind,
                reason=str(exc),
                embedding_tokens=embedding_tokens,
            )
        except Exception as exc:
            log.error(
                "document failed",
                doc_id=source.doc_id,
                path=source.source_path,
                state=state.value,
                error=repr(exc),
            )
            return DocumentOutcome(
                doc_id=source.doc_id,
                source_path=source.source_path,
                state=DocumentState.FAILED,
                error_kind="InternalError",
                reason=repr(exc),
                embedding_tokens=embedding_tokens,
            )

        duration_ms = int((perf_counter() - start) * 1000)
        log.info(
            "document done",
            doc_id=source.doc_id,
            path=source.source_path,
            chunks=chunk_count,
            tokens=embedding_tokens,
            duration_ms=duration_ms,
        )
        return DocumentOutcome(
            doc_id=source.doc_id,
            source_path=source.source_path,
            state=DocumentState.DONE,
            chunk_count=chunk_count,
            embedding_tokens=embedding_tokens,
        )

    def run(self, sources: Iterable[SourceFile]) -> IngestionRun:
        context = self._context
        pending = list(sources)
        run = IngestionRun()
        context.log.info(
            "run started",
            documents=len(pending),
            concurrency=context.concurrency,
        )

        in_flight: dict[Future[DocumentOutcome], SourceFile] = {}
        with ThreadPoolExecutor(
            max_workers=context.concurrency,
            thread_name_prefix="docingest",
        ) as executor:
            for position, source in enumerate(pending):
                _drain(in_flight, run, keep=context.concurrency - 1)
                if context.cancel_event.is_set():
                    run.cancelled = True
                    for skipped in pending[position:]:
                        run.record(
                            DocumentOutcome(
                                doc_id=skipped.doc_id,
                                source_path=skipped.source_path,
                                state=DocumentState.SKIPPED,
                                reason="cancelled",
                            )
                        )
                    context.log.info("run cancelled", undispatched=len(pending) - position)
                    break
                in_flight[executor.submit(self.process, source)] = source
            _drain(in_flight, run, keep=0)

        context.log.info(
            "run finished",
            done=run.count(DocumentState.DONE),
            skipped=run.count(DocumentState.SKIPPED),
            failed=run.count(DocumentState.FAILED),
            chunks=run.chunks_uploaded,
            tokens=run.embedding_tokens,
        )
        return run


def _drain(
    in_flight: dict[Future[DocumentOutcome], SourceFile],
    run: IngestionRun,
    *,
    keep: int,
) -> None:
    while len(in_flight) > keep:
        done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
        for future in done:
            in_flight.pop(future)
            run.record(future.result())


def ingest(selector: str, context: PipelineContext) -> IngestionRun:
    sources = discover_documents(selector, source_root=context.source_root)
    return IngestionPipeline(context).run(sources)


def remove(selector: str, context: PipelineContext) -> IngestionRun:
    """Delete every document matching ``selector`` from the index and blob store."""
    run = IngestionRun()
    for source in discover_documents(selector, source_root=context.source_root):
        try:
            removed = context.indexer.remove(source.doc_id, source.source_path)
        except IngestionError as exc:
            context.log.error(
                "remove failed",
                doc_id=source.doc_id,
                path=source.source_path,
                error=exc.kind,
                reason=str(exc),
            )
            run.record(
                DocumentOutcome(
                    doc_id=source.doc_id,
                    source_path=source.source_path,
                    state=DocumentState.FAILED,
                    error_kind=exc.kind,
                    reason=str(exc),
                )
            )
            continue

        context.log.info(
            "document removed",
            doc_id=source.doc_id,
            path=source.source_path,
            chunks=removed,
        )
        run.record(
            DocumentOutcome(
                doc_id=source.doc_id,
                source_path=source.source_path,
                state=DocumentState.DONE,
            )
        )
    return run
